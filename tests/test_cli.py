"""Tests for the operational CLI."""

from datetime import date
from uuid import uuid4

import pytest

from gaji_engine.cli import GajiCli
from gaji_engine.config import get_settings


@pytest.fixture
def sqlite_url(tmp_path, monkeypatch):
    """Point DATABASE_URL at a throwaway SQLite file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestParser:
    """Test argument parsing."""

    def test_create_run_scope_options(self):
        company_id = uuid4()
        args = GajiCli().parser.parse_args(
            ["create-run", "--company-id", str(company_id), "--month", "3", "--year", "2025", "--all", "outlet"]
        )

        assert args.company_id == company_id
        assert args.all_units == "outlet"
        assert args.department_id is None

    def test_department_and_outlet_are_exclusive(self):
        with pytest.raises(SystemExit):
            GajiCli().parser.parse_args(
                [
                    "create-run",
                    "--company-id", str(uuid4()),
                    "--month", "3",
                    "--year", "2025",
                    "--department-id", str(uuid4()),
                    "--outlet-id", str(uuid4()),
                ]
            )

    def test_repair_midnight_options(self):
        args = GajiCli().parser.parse_args(
            ["repair-midnight", "--company-id", str(uuid4()), "--since", "2025-03-01", "--dry-run"]
        )

        assert args.since == date(2025, 3, 1)
        assert args.dry_run is True

    def test_malformed_company_id(self):
        with pytest.raises(SystemExit):
            GajiCli().parser.parse_args(["finalize", "--company-id", "abc", "--run-id", str(uuid4())])


class TestCommands:
    """Test commands end to end against SQLite."""

    def test_no_command_prints_help(self, capsys):
        assert GajiCli().run([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_init_db(self, sqlite_url, capsys):
        assert GajiCli().run(["init-db"]) == 0
        assert "Tables created" in capsys.readouterr().out

    def test_engine_errors_reported_with_code(self, sqlite_url, capsys):
        cli = GajiCli()
        cli.run(["init-db"])

        exit_code = cli.run(["init-leave", "--company-id", str(uuid4()), "--year", "2025"])

        assert exit_code == 1
        assert "ERROR [NOT_FOUND]" in capsys.readouterr().err

    def test_bank_file_for_unknown_run(self, sqlite_url, capsys):
        cli = GajiCli()
        cli.run(["init-db"])

        exit_code = cli.run(
            ["bank-file", "--company-id", str(uuid4()), "--run-id", str(uuid4())]
        )

        assert exit_code == 1
        assert "ERROR [NOT_FOUND]" in capsys.readouterr().err
