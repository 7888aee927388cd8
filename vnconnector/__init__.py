"""
vnconnector - SSI FastConnect connector for the Vietnamese stock market.

    from vnconnector import create_exchange
    exchange = create_exchange("vietnam", {"consumerID": "...", "consumerSecret": "..."})
"""

from vnconnector.brokers import ExchangeConnector, ExchangeId, VietnamConnector, create_exchange
from vnconnector.config import ConnectorConfig, load_config

__version__ = "0.3.0"

__all__ = [
    "ConnectorConfig",
    "ExchangeConnector",
    "ExchangeId",
    "VietnamConnector",
    "create_exchange",
    "load_config",
]
