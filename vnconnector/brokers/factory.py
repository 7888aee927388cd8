"""
Exchange factory.

Builds a connector from an exchange id and either a ConnectorConfig or a flat
option map (consumerID, consumerSecret, accountNo, nested sections...).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from vnconnector.config import ConnectorConfig
from vnconnector.errors import ConnectorConstructionError, UnknownExchange
from vnconnector.logging import get_logger, LogStream

from .base import ExchangeConnector
from .vietnam import VietnamConnector


class ExchangeId(str, Enum):
    VIETNAM = "vietnam"


_BUILDERS: Dict[ExchangeId, Callable[..., ExchangeConnector]] = {
    ExchangeId.VIETNAM: VietnamConnector,
}


def _exchange_id(value: Union[ExchangeId, str]) -> ExchangeId:
    if isinstance(value, ExchangeId):
        return value
    try:
        return ExchangeId(str(value).strip().lower())
    except ValueError:
        known = ", ".join(e.value for e in ExchangeId)
        raise UnknownExchange(f"unknown exchange: {value!r} (known: {known})") from None


def create_exchange(
    exchange_id: Union[ExchangeId, str],
    options: Optional[Union[ConnectorConfig, Mapping[str, Any]]] = None,
    require_credentials: bool = True,
    **kwargs: Any,
) -> ExchangeConnector:
    """
    Construct a connector.

    Args:
        exchange_id: ExchangeId or its string value
        options: ConnectorConfig or flat option dict
        require_credentials: fail construction when consumer id/secret are blank
        **kwargs: forwarded to the connector (transport, clock, session)

    Raises:
        UnknownExchange: exchange_id is not registered
        ConnectorConstructionError: options do not validate or credentials missing
    """
    eid = _exchange_id(exchange_id)

    if isinstance(options, ConnectorConfig):
        config = options
    else:
        try:
            config = ConnectorConfig.from_options(options or {})
        except (ValidationError, ValueError) as e:
            raise ConnectorConstructionError(f"invalid {eid.value} options: {e}", detail=e) from e

    if require_credentials and not config.credentials.is_complete:
        raise ConnectorConstructionError(f"{eid.value}: consumerID and consumerSecret are required")

    connector = _BUILDERS[eid](config, **kwargs)
    get_logger(LogStream.SYSTEM).info("Exchange created", extra={"exchange": eid.value})
    return connector
