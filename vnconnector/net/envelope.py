"""
FastConnect response envelope.

Every data/trading endpoint answers with
    {"status": 200 | "SUCCESS" | ..., "message": str, "data": ..., "dataList": [...]}
"dataList" is preferred when present, otherwise "data".
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from vnconnector.errors import BrokerError, DecodeError

SUCCESS_STATUSES = frozenset({"200", "SUCCESS", "OK"})


def decode(text: str) -> Dict[str, Any]:
    """Parse a response body that must be a JSON object."""
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"response is not valid JSON: {e}", detail=(text or "")[:200]) from e
    if not isinstance(obj, dict):
        raise DecodeError(f"expected JSON object, got {type(obj).__name__}")
    return obj


def is_success(status: Any) -> bool:
    if isinstance(status, bool):
        return False
    if isinstance(status, (int, float)):
        return status == 200
    if isinstance(status, str):
        return status.strip().upper() in SUCCESS_STATUSES
    return False


def ensure_success(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Raise BrokerError unless the envelope reports success."""
    status = obj.get("status")
    if is_success(status):
        return obj
    message = str(obj.get("message") or "").strip() or "ssi api failed"
    raise BrokerError(message, status=status)


def extract_payload(obj: Dict[str, Any]) -> Any:
    payload = obj.get("dataList")
    if payload is None:
        payload = obj.get("data")
    return payload


def unwrap(text: str) -> Any:
    """decode + ensure_success + extract_payload."""
    return extract_payload(ensure_success(decode(text)))


def as_records(payload: Any) -> List[Dict[str, Any]]:
    """Normalise a payload to a list of dict records (non-dict items dropped)."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    raise DecodeError(f"unexpected payload type {type(payload).__name__}")
