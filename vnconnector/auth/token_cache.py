"""
Auto-refreshing bearer token cache for FastConnect.

CRITICAL PROPERTIES:
1. Fast path is a shared read: no network while the token is fresh
2. Refresh happens under the exclusive lock with a re-check, so N
   concurrent callers on a stale cache trigger exactly ONE auth request
3. Expiry comes from the JWT "exp" claim when present, else now + default TTL
4. A token is treated as stale safety_margin_ms before it actually expires
5. A freshly issued token is served for at least MIN_FRESH_MS, even when
   its claim already falls inside the safety margin
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Optional

from vnconnector.config import ConnectorConfig
from vnconnector.errors import AuthFailed, CredentialsMissing, InvalidCredentialResponse
from vnconnector.logging import get_logger, LogStream
from vnconnector.net import envelope
from vnconnector.net.transport import Transport
from vnconnector.time.clock import Clock, RealTimeClock
from vnconnector.utils.locks import ReadWriteLock


@dataclass(frozen=True)
class Credential:
    """Bearer token and its expiry (epoch ms)."""
    value: str
    expiry_ms: int

    def is_fresh(self, now_ms: int, margin_ms: int) -> bool:
        return now_ms < self.expiry_ms - margin_ms

    def __repr__(self) -> str:
        return f"Credential(value='***', expiry_ms={self.expiry_ms})"


def parse_jwt_exp_ms(token: str) -> int:
    """
    Expiry of a self-describing token in epoch ms, or 0 if it has none.

    The middle of three dot-separated segments is base64url JSON with a
    numeric "exp" claim in seconds.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return 0
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError):
        return 0
    if not isinstance(claims, dict):
        return 0
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)) or exp <= 0:
        return 0
    return int(exp) * 1000


def _response_code(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        return -1


def _extract_token(obj: dict) -> str:
    token = str(obj.get("token") or "").strip()
    if not token:
        data = obj.get("data")
        if isinstance(data, dict):
            token = str(data.get("accessToken") or "").strip()
    if not token:
        token = str(obj.get("accessToken") or "").strip()
    return token


class TokenCache:
    """
    Mutually exclusive credential cache.

    Usage:
        cache = TokenCache(config, transport)
        headers = {"Authorization": f"Bearer {cache.get_valid_token()}"}
    """

    MIN_FRESH_MS = 30_000

    def __init__(self, config: ConnectorConfig, transport: Transport, clock: Optional[Clock] = None):
        self._creds = config.credentials
        self._margin_ms = config.token.safety_margin_ms
        self._default_ttl_ms = config.token.default_ttl_ms
        self._transport = transport
        self._clock = clock or RealTimeClock()
        self._lock = ReadWriteLock()
        self._credential: Optional[Credential] = None
        self.refresh_count = 0
        self.logger = get_logger(LogStream.AUTH)

    def peek(self) -> Optional[Credential]:
        with self._lock.read():
            return self._credential

    def get_valid_token(self) -> str:
        with self._lock.read():
            cred = self._credential
            if cred is not None and cred.is_fresh(self._clock.now_ms(), self._margin_ms):
                return cred.value

        with self._lock.write():
            now_ms = self._clock.now_ms()
            cred = self._credential
            if cred is not None and cred.is_fresh(now_ms, self._margin_ms):
                return cred.value

            cred = self._authenticate(now_ms)
            self._credential = cred
            return cred.value

    def invalidate(self, stale_token: Optional[str] = None) -> None:
        """
        Drop the cached token so the next call refreshes.

        With ``stale_token`` only that exact token is dropped; a newer one
        installed by another thread is kept.
        """
        with self._lock.write():
            if self._credential is None:
                return
            if stale_token is not None and self._credential.value != stale_token:
                return
            self._credential = None
            self.logger.info("Access token invalidated")

    def _authenticate(self, now_ms: int) -> Credential:
        if not self._creds.is_complete:
            raise CredentialsMissing("consumer_id and consumer_secret are required")

        self.logger.info("Requesting access token", extra={"consumer_id": self._creds.consumer_id})
        body = self._transport.request("access_token", {
            "consumerID": self._creds.consumer_id,
            "consumerSecret": self._creds.consumer_secret,
        })
        obj = envelope.decode(body)

        message = str(obj.get("message") or "").strip()
        if _response_code(obj.get("responseCode")) != 0:
            raise AuthFailed(message or "auth failed", detail={"responseCode": obj.get("responseCode")})
        if "status" in obj and not envelope.is_success(obj.get("status")):
            raise AuthFailed(message or "auth failed", detail={"status": obj.get("status")})

        token = _extract_token(obj)
        if not token:
            raise InvalidCredentialResponse("auth response contained no access token")

        expiry_ms = parse_jwt_exp_ms(token)
        from_claim = expiry_ms > 0
        if not from_claim:
            expiry_ms = now_ms + self._default_ttl_ms

        floor_ms = now_ms + self._margin_ms + self.MIN_FRESH_MS
        if expiry_ms < floor_ms:
            self.logger.warning(
                "Access token expires inside the safety margin, serving it briefly",
                extra={"claimed_expiry_ms": expiry_ms, "now_ms": now_ms, "margin_ms": self._margin_ms},
            )
            expiry_ms = floor_ms

        self.refresh_count += 1
        self.logger.info(
            "Access token refreshed",
            extra={"expiry_ms": expiry_ms, "expiry_from_claim": from_claim, "refresh_count": self.refresh_count},
        )
        return Credential(token, expiry_ms)
