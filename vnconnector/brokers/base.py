"""
Canonical exchange connector interface.

Every connector exposes the same operations. Operations a connector cannot
serve keep the default implementation, which raises CapabilityNotImplemented
immediately without touching the network or any shared state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

from vnconnector.data.candles import Candle
from vnconnector.errors import CapabilityNotImplemented
from vnconnector.market.instrument import Instrument

from .models import Balances, Fee, Order, Position, Ticker


# Streaming and order-book operations; none of these are served today.
UNSUPPORTED_BY_DEFAULT = (
    "fetch_order_book",
    "watch_order_books",
    "unwatch_order_books",
    "watch_ohlcvs",
    "unwatch_ohlcvs",
    "watch_mark_prices",
    "unwatch_mark_prices",
    "watch_trades",
    "unwatch_trades",
    "watch_my_trades",
    "watch_balance",
    "watch_positions",
    "watch_account_config",
    "set_leverage",
)

CORE_OPERATIONS = (
    "load_markets",
    "fetch_ticker",
    "fetch_tickers",
    "fetch_ohlcv",
    "create_order",
    "cancel_order",
    "edit_order",
    "fetch_order",
    "fetch_orders",
    "fetch_open_orders",
    "fetch_balance",
    "fetch_positions",
    "calculate_fee",
)


class ExchangeConnector(ABC):
    """
    Base class for exchange connectors.

    Subclasses implement the abstract operations and may override any of the
    default CapabilityNotImplemented stubs once they support them.
    """

    id: str = ""
    name: str = ""

    # ------------------------------------------------------------------
    # Capability reporting
    # ------------------------------------------------------------------

    def has(self, capability: str) -> bool:
        method = getattr(type(self), capability, None)
        if method is None:
            return False
        if capability in UNSUPPORTED_BY_DEFAULT:
            return method is not getattr(ExchangeConnector, capability)
        return True

    def capabilities(self) -> FrozenSet[str]:
        """Names of the operations this connector actually serves."""
        names = set(CORE_OPERATIONS) | set(self.extra_capabilities())
        names |= {c for c in UNSUPPORTED_BY_DEFAULT if self.has(c)}
        return frozenset(names)

    def extra_capabilities(self) -> Sequence[str]:
        return ()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    @abstractmethod
    def load_markets(self, reload: bool = False) -> Dict[str, Instrument]:
        ...

    @abstractmethod
    def fetch_ticker(self, symbol: str) -> Ticker:
        ...

    @abstractmethod
    def fetch_tickers(self, symbols: Optional[Sequence[str]] = None) -> Dict[str, Ticker]:
        ...

    @abstractmethod
    def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1d",
        since: Any = None,
        limit: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Candle]:
        ...

    @abstractmethod
    def create_order(
        self,
        symbol: str,
        order_type: str,
        side: str,
        amount: Any,
        price: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        ...

    @abstractmethod
    def cancel_order(self, order_id: str, symbol: Optional[str] = None,
                     params: Optional[Mapping[str, Any]] = None) -> Order:
        ...

    @abstractmethod
    def edit_order(self, order_id: str, symbol: str, side: str,
                   amount: Any = None, price: Any = None,
                   params: Optional[Mapping[str, Any]] = None) -> Order:
        ...

    @abstractmethod
    def fetch_order(self, order_id: str, symbol: Optional[str] = None,
                    params: Optional[Mapping[str, Any]] = None) -> Order:
        ...

    @abstractmethod
    def fetch_orders(self, symbol: Optional[str] = None, since: Any = None, limit: Optional[int] = None,
                     params: Optional[Mapping[str, Any]] = None) -> List[Order]:
        ...

    @abstractmethod
    def fetch_open_orders(self, symbol: Optional[str] = None, since: Any = None, limit: Optional[int] = None,
                          params: Optional[Mapping[str, Any]] = None) -> List[Order]:
        ...

    @abstractmethod
    def fetch_balance(self, params: Optional[Mapping[str, Any]] = None) -> Balances:
        ...

    @abstractmethod
    def fetch_positions(self, symbols: Optional[Sequence[str]] = None,
                        params: Optional[Mapping[str, Any]] = None) -> List[Position]:
        ...

    @abstractmethod
    def calculate_fee(self, symbol: str, side: str, amount: Any, price: Any,
                      is_maker: bool = False) -> Fee:
        ...

    # ------------------------------------------------------------------
    # Not served: order book, streaming, leverage
    # ------------------------------------------------------------------

    def fetch_order_book(self, symbol: str, limit: Optional[int] = None) -> Any:
        raise CapabilityNotImplemented("fetch_order_book")

    def watch_order_books(self, symbols: Sequence[str], limit: Optional[int] = None) -> Any:
        raise CapabilityNotImplemented("watch_order_books")

    def unwatch_order_books(self, symbols: Sequence[str]) -> Any:
        raise CapabilityNotImplemented("unwatch_order_books")

    def watch_ohlcvs(self, symbols_and_timeframes: Sequence[Sequence[str]]) -> Any:
        raise CapabilityNotImplemented("watch_ohlcvs")

    def unwatch_ohlcvs(self, symbols_and_timeframes: Sequence[Sequence[str]]) -> Any:
        raise CapabilityNotImplemented("unwatch_ohlcvs")

    def watch_mark_prices(self, symbols: Sequence[str]) -> Any:
        raise CapabilityNotImplemented("watch_mark_prices")

    def unwatch_mark_prices(self, symbols: Sequence[str]) -> Any:
        raise CapabilityNotImplemented("unwatch_mark_prices")

    def watch_trades(self, symbols: Sequence[str]) -> Any:
        raise CapabilityNotImplemented("watch_trades")

    def unwatch_trades(self, symbols: Sequence[str]) -> Any:
        raise CapabilityNotImplemented("unwatch_trades")

    def watch_my_trades(self, symbol: Optional[str] = None, since: Optional[datetime] = None,
                        limit: Optional[int] = None) -> Any:
        raise CapabilityNotImplemented("watch_my_trades")

    def watch_balance(self) -> Any:
        raise CapabilityNotImplemented("watch_balance")

    def watch_positions(self, symbols: Optional[Sequence[str]] = None) -> Any:
        raise CapabilityNotImplemented("watch_positions")

    def watch_account_config(self) -> Any:
        raise CapabilityNotImplemented("watch_account_config")

    def set_leverage(self, leverage: Decimal, symbol: Optional[str] = None) -> Any:
        raise CapabilityNotImplemented("set_leverage")
