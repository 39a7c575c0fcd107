from typing import Dict, Iterable, Type

from budget_tracker.core.exceptions import ConfigurationError
from budget_tracker.infrastructure.exchanges.base import BaseExchangeAdapter
from budget_tracker.infrastructure.exchanges.bitget.client import BitgetAdapter
from budget_tracker.infrastructure.exchanges.bybit.client import BybitAdapter
from budget_tracker.infrastructure.exchanges.mexc.client import MexcAdapter

ADAPTERS: Dict[str, Type[BaseExchangeAdapter]] = {
    "bybit": BybitAdapter,
    "mexc": MexcAdapter,
    "bitget": BitgetAdapter,
}


def create_adapter(name: str, settings=None, **kwargs) -> BaseExchangeAdapter:
    """
    Build the adapter for one exchange. Values from settings (timeouts,
    Bybit testnet, Bitget passphrase) are used unless overridden in kwargs.
    """
    key = name.lower()
    if key not in ADAPTERS:
        raise ConfigurationError(f"Unknown exchange: {name}")

    options = {}
    if settings is not None:
        options["timeout"] = settings.HTTP_TIMEOUT_SECONDS
        options["request_delay"] = settings.REQUEST_DELAY_SECONDS
        if key == "bybit":
            options["testnet"] = settings.BYBIT_TESTNET
            options["recv_window"] = settings.BYBIT_RECV_WINDOW
        elif key == "bitget":
            options["passphrase"] = settings.BITGET_PASSPHRASE
    options.update(kwargs)
    return ADAPTERS[key](**options)


def create_adapters(names: Iterable[str], settings=None) -> Dict[str, BaseExchangeAdapter]:
    return {name: create_adapter(name, settings) for name in names}
