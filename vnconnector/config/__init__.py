"""
Configuration system with Pydantic validation.

Single source of truth for all configuration parameters.
"""

from .schema import (
    ConnectorConfig,
    CredentialsConfig,
    HostsConfig,
    TransportConfig,
    TokenConfig,
    CatalogConfig,
    CandleConfig,
    SessionConfig,
    SessionWindowConfig,
    OrderRulesConfig,
    TickRuleConfig,
    FeeConfig,
    LoggingConfig,
    SessionState,
    SsiOrderType,
    LogLevel,
)

from .loader import (
    ConfigLoader,
    load_config,
)

__all__ = [
    "ConnectorConfig",
    "CredentialsConfig",
    "HostsConfig",
    "TransportConfig",
    "TokenConfig",
    "CatalogConfig",
    "CandleConfig",
    "SessionConfig",
    "SessionWindowConfig",
    "OrderRulesConfig",
    "TickRuleConfig",
    "FeeConfig",
    "LoggingConfig",
    "SessionState",
    "SsiOrderType",
    "LogLevel",
    "ConfigLoader",
    "load_config",
]
