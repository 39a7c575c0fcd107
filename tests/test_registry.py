import sys

import pytest

from budget_tracker.cmd import cli
from budget_tracker.config.settings import Settings
from budget_tracker.core.exceptions import ConfigurationError
from budget_tracker.infrastructure.exchanges.bitget.client import BitgetAdapter
from budget_tracker.infrastructure.exchanges.bybit.client import TESTNET_URL, BybitAdapter
from budget_tracker.infrastructure.exchanges.registry import create_adapter, create_adapters


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_settings_are_passed_to_adapters():
    settings = make_settings(BYBIT_TESTNET=True, HTTP_TIMEOUT_SECONDS=7, BITGET_PASSPHRASE="pp")

    bybit = create_adapter("Bybit", settings)
    assert isinstance(bybit, BybitAdapter)
    assert bybit.base_url == TESTNET_URL
    assert bybit.timeout == 7

    bitget = create_adapter("bitget", settings)
    assert isinstance(bitget, BitgetAdapter)
    assert bitget.passphrase == "pp"


def test_unknown_exchange():
    with pytest.raises(ConfigurationError):
        create_adapter("gate")


def test_create_adapters_gives_each_its_own_session():
    adapters = create_adapters(["bybit", "mexc"])
    assert set(adapters) == {"bybit", "mexc"}
    assert adapters["bybit"].session is not adapters["mexc"].session


def test_settings_helpers():
    settings = make_settings(
        SYNC_EXCHANGES=" Bybit, MEXC ,",
        CORS_ORIGINS="http://localhost:3000,http://localhost:5173",
        BYBIT_API_KEY="k",
        BYBIT_API_SECRET="s",
        MEXC_API_KEY="only-key",
    )
    assert settings.sync_exchanges == ["bybit", "mexc"]
    assert settings.cors_origins == ["http://localhost:3000", "http://localhost:5173"]
    assert settings.bootstrap_credentials() == {"bybit": ("k", "s")}


def test_cli_without_command_exits(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["budget-tracker"])
    with pytest.raises(SystemExit) as exc_info:
        cli.main()
    assert exc_info.value.code == 1
