"""
HTTP transport for the SSI FastConnect Data and Trading APIs.

CRITICAL PROPERTIES:
1. Every request goes through the host throttler
2. GET params are sent as a query string, POST params as a JSON body
3. Authenticated endpoints carry "Authorization: Bearer <token>"
4. HTTP 429 / 5xx / connection errors retried with exponential backoff
5. HTTP 401 invalidates the cached token and retries once
6. Payloads are logged only after secrets are masked

The transport returns the raw response text. Decoding and envelope checks
belong to the caller (see brokers.envelope).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union

import requests

from vnconnector.config import ConnectorConfig
from vnconnector.errors import TransportError
from vnconnector.logging import get_logger, LogStream
from vnconnector.net.throttler import ExponentialBackoff, RateLimit, Throttler


# ============================================================================
# ENDPOINT TABLE
# ============================================================================

@dataclass(frozen=True)
class Endpoint:
    """One upstream API operation."""
    name: str
    host: str          # HostsConfig field name
    path: str
    method: str = "GET"
    auth: bool = True


ENDPOINTS: Dict[str, Endpoint] = {e.name: e for e in (
    # Auth
    Endpoint("access_token", "data_api", "api/v2/Market/AccessToken", "POST", auth=False),
    # Market data
    Endpoint("securities", "data_api", "api/v2/Market/Securities"),
    Endpoint("securities_details", "data_api", "api/v2/Market/SecuritiesDetails"),
    Endpoint("daily_ohlc", "data_api", "api/v2/Market/DailyOhlc"),
    Endpoint("intraday_ohlc", "data_api", "api/v2/Market/IntradayOhlc"),
    Endpoint("daily_stock_price", "data_api", "api/v2/Market/DailyStockPrice"),
    Endpoint("company_info", "data_api", "api/Market/GetCompanyInfo"),
    Endpoint("financial_report", "data_api", "api/Market/GetFinancialReport"),
    Endpoint("trading_holidays", "data_api", "api/Market/GetTradingHolidays"),
    # Trading
    Endpoint("new_order", "trading_api", "api/Trading/NewOrder", "POST"),
    Endpoint("cancel_order", "trading_api", "api/Trading/CancelOrder", "POST"),
    Endpoint("modify_order", "trading_api", "api/Trading/ModifyOrder", "POST"),
    Endpoint("order_history", "trading_api", "api/Trading/GetOrderHistory"),
    Endpoint("order_detail", "trading_api", "api/Trading/GetOrderDetail"),
    Endpoint("account_balance", "trading_api", "api/Account/GetAccountBalance"),
    Endpoint("stock_position", "trading_api", "api/Account/GetStockPosition"),
)}


class TokenProvider(Protocol):
    def get_valid_token(self) -> str: ...

    def invalidate(self, stale_token: Optional[str] = None) -> None: ...


class Transport(Protocol):
    """What the connector core needs from an HTTP layer."""

    def request(self, endpoint: Union[str, Endpoint], params: Optional[Mapping[str, Any]] = None) -> str: ...


# ============================================================================
# SECRET MASKING
# ============================================================================

_SECRET_MARKERS = ("secret", "token", "password")


def sanitize_payload(payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy of ``payload`` with secret-looking keys masked."""
    if not payload:
        return {}
    out = {}
    for key, value in payload.items():
        if any(marker in str(key).lower() for marker in _SECRET_MARKERS):
            out[key] = "***"
        elif isinstance(value, Mapping):
            out[key] = sanitize_payload(value)
        else:
            out[key] = value
    return out


# ============================================================================
# HTTP TRANSPORT
# ============================================================================

class HttpTransport:
    """
    requests-based transport.

    THREAD SAFETY:
    - Safe for concurrent use; requests.Session is shared, throttler is locked
    - Never holds a lock while asking the token provider for a token
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        config: ConnectorConfig,
        session: Optional[requests.Session] = None,
        throttler: Optional[Throttler] = None,
        token_provider: Optional[TokenProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._hosts = config.hosts
        self._cfg = config.transport
        self.session = session or requests.Session()
        self.throttler = throttler or Throttler({
            host: RateLimit(self._cfg.rate_limit_requests, self._cfg.rate_limit_window_seconds)
            for host in ("data_api", "trading_api")
        })
        self.backoff = ExponentialBackoff(
            base=self._cfg.retry_delay_seconds,
            multiplier=self._cfg.retry_backoff_multiplier,
            max_delay=self._cfg.retry_max_delay_seconds,
        )
        self._token_provider = token_provider
        self._sleep = sleep
        self.logger = get_logger(LogStream.TRANSPORT)

    def set_token_provider(self, provider: TokenProvider) -> None:
        self._token_provider = provider

    def url_for(self, endpoint: Endpoint) -> str:
        base = getattr(self._hosts, endpoint.host)
        return f"{base}/{endpoint.path.lstrip('/')}"

    def _token(self, endpoint: Endpoint) -> Optional[str]:
        if not endpoint.auth:
            return None
        if self._token_provider is None:
            raise TransportError(f"{endpoint.name} requires authentication but no token provider is set")
        return self._token_provider.get_valid_token()

    def _send(self, endpoint: Endpoint, params: Dict[str, Any], token: Optional[str]) -> requests.Response:
        url = self.url_for(endpoint)
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.throttler.acquire(endpoint.host)
        if endpoint.method.upper() == "GET":
            return self.session.request(
                "GET", url, params=params or None, headers=headers, timeout=self._cfg.timeout_seconds,
            )
        headers["Content-Type"] = "application/json"
        return self.session.request(
            endpoint.method.upper(), url, json=params or {}, headers=headers, timeout=self._cfg.timeout_seconds,
        )

    def request(self, endpoint: Union[str, Endpoint], params: Optional[Mapping[str, Any]] = None) -> str:
        """
        Send one logical request, retrying transient failures.

        Returns:
            Response body text

        Raises:
            TransportError: connection failure, timeout or non-2xx after retries
        """
        if isinstance(endpoint, str):
            try:
                endpoint = ENDPOINTS[endpoint]
            except KeyError:
                raise TransportError(f"unknown endpoint: {endpoint}") from None
        payload = dict(params or {})
        max_retries = self._cfg.max_retries
        reauthed = False

        self.logger.debug(
            "SSI request",
            extra={
                "endpoint": endpoint.name,
                "method": endpoint.method,
                "url": self.url_for(endpoint),
                "payload": sanitize_payload(payload),
            }
        )

        attempt = 0
        while True:
            token = self._token(endpoint)
            try:
                response = self._send(endpoint, payload, token)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt < max_retries - 1:
                    self.logger.warning(
                        "Retryable network error (attempt %d/%d): %s",
                        attempt + 1, max_retries, e,
                        extra={"endpoint": endpoint.name},
                    )
                    self._sleep(self.backoff.next_delay(attempt))
                    attempt += 1
                    continue
                raise TransportError(f"{endpoint.name}: {e}") from e
            except requests.RequestException as e:
                raise TransportError(f"{endpoint.name}: {e}") from e

            status = response.status_code

            if status == 401 and endpoint.auth and not reauthed and self._token_provider is not None:
                self.logger.warning("Unauthorized, refreshing token", extra={"endpoint": endpoint.name})
                self._token_provider.invalidate(token)
                reauthed = True
                continue

            if status in self.RETRYABLE_STATUS and attempt < max_retries - 1:
                self.logger.warning(
                    "Retryable HTTP status %d (attempt %d/%d)",
                    status, attempt + 1, max_retries,
                    extra={"endpoint": endpoint.name},
                )
                self._sleep(self.backoff.next_delay(attempt))
                attempt += 1
                continue

            if not 200 <= status < 300:
                self.logger.warning(
                    "SSI request failed",
                    extra={"endpoint": endpoint.name, "status_code": status, "body_len": len(response.text or "")},
                )
                raise TransportError(
                    f"{endpoint.name}: HTTP {status}",
                    status_code=status,
                    detail=(response.text or "")[:500],
                )

            self.logger.debug(
                "SSI response",
                extra={"endpoint": endpoint.name, "status_code": status, "body_len": len(response.text or "")},
            )
            return response.text
