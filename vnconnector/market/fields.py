"""
Case-insensitive field access for upstream records.

FastConnect is inconsistent about key casing ("symbol" vs "Symbol",
"tradingDate" vs "TradingDate"). Each raw record is passed through
normalize_record() exactly once; everything downstream reads lower-case keys.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_record(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Copy of ``raw`` with lower-cased keys.

    When two keys differ only by case the first non-blank value wins.
    """
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        lk = str(key).lower()
        if lk not in out or (_blank(out[lk]) and not _blank(value)):
            out[lk] = value
    return out


def first(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-blank value among ``keys`` (already lower-case)."""
    for key in keys:
        value = record.get(key)
        if not _blank(value):
            return value
    return default


def as_text(value: Any) -> str:
    if _blank(value):
        return ""
    return str(value).strip()


def to_decimal(value: Any) -> Optional[Decimal]:
    if _blank(value) or isinstance(value, bool):
        return None
    try:
        if isinstance(value, float):
            dec = Decimal(repr(value))
        else:
            dec = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return None
    return dec if dec.is_finite() else None


def to_float(value: Any, default: float = 0.0) -> float:
    if _blank(value) or isinstance(value, bool):
        return default
    try:
        return float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    dec = to_decimal(value)
    if dec is None:
        return default
    if dec != dec.to_integral_value():
        return default
    return int(dec)
