"""
Exchange connectors: canonical interface, records and the SSI connector.
"""

from .models import (
    Asset,
    Balances,
    CompanyInfo,
    Fee,
    FinancialReport,
    Order,
    OrderSide,
    OrderStatus,
    Position,
    Ticker,
    TradingHoliday,
    map_order_status,
)
from .base import ExchangeConnector
from .vietnam import VietnamConnector
from .factory import ExchangeId, create_exchange

__all__ = [
    "Asset",
    "Balances",
    "CompanyInfo",
    "Fee",
    "FinancialReport",
    "Order",
    "OrderSide",
    "OrderStatus",
    "Position",
    "Ticker",
    "TradingHoliday",
    "map_order_status",
    "ExchangeConnector",
    "VietnamConnector",
    "ExchangeId",
    "create_exchange",
]
