"""Tests for the command line entry point."""

import pytest

from stacks_lakehouse.__main__ import build_parser, main
from stacks_lakehouse.config import clear_settings_cache


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.delenv("PIPELINE_API_KEY", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestParser:
    def test_trigger_defaults_to_full(self) -> None:
        args = build_parser().parse_args(["trigger"])

        assert args.stage == "full"
        assert args.marts is None

    def test_trigger_marts(self) -> None:
        args = build_parser().parse_args(["trigger", "--stage", "marts", "--marts", "dim_blocks", "fact_defi_metrics"])

        assert args.marts == ["dim_blocks", "fact_defi_metrics"]

    def test_rejects_unknown_stage(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["trigger", "--stage", "nightly"])

    def test_register_contract(self) -> None:
        args = build_parser().parse_args(["register-contract", "SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9.token-abtc"])

        assert args.command == "register-contract"
        assert args.contract_id.endswith(".token-abtc")


def test_trigger_without_secret_exits_early() -> None:
    assert main(["trigger", "--stage", "staging"]) == 2


def test_missing_database_url_exits_with_message(monkeypatch, capsys) -> None:
    monkeypatch.delenv("DATABASE_URL")
    clear_settings_cache()

    assert main(["status"]) == 2
    err = capsys.readouterr().err
    assert err.startswith("Invalid configuration:")
    assert "DATABASE_URL" in err
