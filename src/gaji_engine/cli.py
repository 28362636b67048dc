"""Payroll engine command line interface.

Provides operational tools for:
- Schema creation
- Creating, recalculating and finalizing payroll runs
- Bank file export
- Midnight clock-in repair
- Leave year initialization

Usage:
    python -m gaji_engine.cli init-db
    python -m gaji_engine.cli create-run --company-id X --month 3 --year 2025
    python -m gaji_engine.cli finalize --company-id X --run-id Y
    python -m gaji_engine.cli bank-file --company-id X --run-id Y --output bank.csv
    python -m gaji_engine.cli repair-midnight --company-id X --since 2025-03-01 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import Any, Callable, Coroutine
from uuid import UUID

from gaji_engine.config import get_settings
from gaji_engine.database import dispose_db, get_session, init_db
from gaji_engine.errors import PayrollError
from gaji_engine.models import Base
from gaji_engine.services.attendance_service import AttendanceService
from gaji_engine.services.config_service import ConfigService
from gaji_engine.services.export_service import ExportService
from gaji_engine.services.leave_service import LeaveService
from gaji_engine.services.payroll_run_service import PayrollRunService

logger = logging.getLogger("gaji_engine.cli")


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


class GajiCli:
    """Payroll engine Command Line Interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m gaji_engine.cli",
            description="Payroll engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables in DATABASE_URL")

        create = subparsers.add_parser("create-run", help="Create a draft payroll run")
        create.add_argument("--company-id", type=parse_uuid, required=True)
        create.add_argument("--month", type=int, required=True)
        create.add_argument("--year", type=int, required=True)
        scope = create.add_mutually_exclusive_group()
        scope.add_argument("--department-id", type=parse_uuid, help="Scope to one department")
        scope.add_argument("--outlet-id", type=parse_uuid, help="Scope to one outlet")
        scope.add_argument(
            "--all",
            choices=["department", "outlet"],
            dest="all_units",
            help="Create one run per department or outlet",
        )
        create.add_argument("--notes", type=str)

        finalize = subparsers.add_parser("finalize", help="Finalize a draft run")
        finalize.add_argument("--company-id", type=parse_uuid, required=True)
        finalize.add_argument("--run-id", type=parse_uuid, required=True)

        recalc = subparsers.add_parser("recalculate", help="Recalculate every item of a draft run")
        recalc.add_argument("--company-id", type=parse_uuid, required=True)
        recalc.add_argument("--run-id", type=parse_uuid, required=True)

        bank = subparsers.add_parser("bank-file", help="Write the bank transfer CSV")
        bank.add_argument("--company-id", type=parse_uuid, required=True)
        bank.add_argument("--run-id", type=parse_uuid, required=True)
        bank.add_argument(
            "--output",
            type=str,
            help="Output file path (default: stdout)",
        )

        repair = subparsers.add_parser(
            "repair-midnight",
            help="Move stray after-midnight clock-ins onto the previous day's shift",
        )
        repair.add_argument("--company-id", type=parse_uuid, required=True)
        repair.add_argument("--since", type=parse_date, help="Only repair from this date (ISO)")
        repair.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be repaired without writing",
        )

        leave = subparsers.add_parser("init-leave", help="Create leave balances for a year")
        leave.add_argument("--company-id", type=parse_uuid, required=True)
        leave.add_argument("--year", type=int, required=True)

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace], Coroutine[Any, Any, int]]] = {
            "init-db": self._cmd_init_db,
            "create-run": self._cmd_create_run,
            "finalize": self._cmd_finalize,
            "recalculate": self._cmd_recalculate,
            "bank-file": self._cmd_bank_file,
            "repair-midnight": self._cmd_repair_midnight,
            "init-leave": self._cmd_init_leave,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        return asyncio.run(self._execute(handler, parsed))

    async def _execute(
        self,
        handler: Callable[[argparse.Namespace], Coroutine[Any, Any, int]],
        args: argparse.Namespace,
    ) -> int:
        try:
            return await handler(args)
        except PayrollError as e:
            print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 1
        finally:
            await dispose_db()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        engine, _ = init_db()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print(f"Tables created ({len(Base.metadata.tables)})")
        return 0

    async def _cmd_create_run(self, args: argparse.Namespace) -> int:
        """Create a draft run, or one per unit with --all."""
        async with get_session() as session:
            service = PayrollRunService(session)
            if args.all_units:
                outcome = await service.create_all_runs(
                    args.company_id, args.month, args.year, unit=args.all_units, notes=args.notes
                )
                results = outcome.created
                for skipped in outcome.skipped:
                    print(f"  skipped {skipped.unit_name}: {skipped.reason}")
            else:
                results = [
                    await service.create_run(
                        args.company_id,
                        args.month,
                        args.year,
                        department_id=args.department_id,
                        outlet_id=args.outlet_id,
                        notes=args.notes,
                    )
                ]

        for result in results:
            run = result.run
            print(
                f"Created run {run.payroll_run_id} ({run.period_label}): "
                f"{result.items_created} items, net {run.total_net:.2f}"
            )
            for warning in result.warnings:
                print(f"  ! [{warning.code}] {warning.message}")
        return 0

    async def _cmd_finalize(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            result = await PayrollRunService(session).finalize_run(args.run_id, args.company_id)

        print(f"Finalized run {args.run_id}")
        print(f"  Claims linked: {result.claims_linked}")
        print(f"  Advances recovered: {result.advances_applied}")
        for warning in result.warnings:
            print(f"  ! [{warning.code}] {warning.message}")
        return 0

    async def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            result = await PayrollRunService(session).recalculate_all(args.run_id, args.company_id)
        print(f"Recalculated {result.recalculated}/{result.total} items")
        return 0 if result.recalculated == result.total else 1

    async def _cmd_bank_file(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            content = await ExportService(session).bank_file(args.run_id, args.company_id)

        if args.output:
            with open(args.output, "wb") as f:
                f.write(content)
            print(f"Wrote {args.output}")
        else:
            sys.stdout.write(content.decode("utf-8"))
        return 0

    async def _cmd_repair_midnight(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            settings = await ConfigService(session).get_payroll_settings(args.company_id)
            report = await AttendanceService(session).repair_midnight_sessions(
                args.company_id,
                since=args.since,
                dry_run=args.dry_run,
                standard_minutes=settings.standard_work_minutes,
            )
            if args.dry_run:
                await session.rollback()

        prefix = "[DRY RUN] " if args.dry_run else ""
        print(f"{prefix}Repaired: {report.repaired}, deleted: {report.deleted}")
        return 0

    async def _cmd_init_leave(self, args: argparse.Namespace) -> int:
        async with get_session() as session:
            created = await LeaveService(session).initialize_year(args.company_id, args.year)
        print(f"Created {created} leave balances for {args.year}")
        return 0


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = GajiCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
