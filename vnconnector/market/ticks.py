"""
Price tick table.

Tick size depends on segment and price range. Rules are scanned in order and
the first [min_price, max_price) match wins; otherwise the default tick applies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

from vnconnector.config import OrderRulesConfig


@dataclass(frozen=True)
class PriceTickRule:
    segment: str
    min_price: Decimal
    max_price: Decimal
    tick_size: Decimal

    def matches(self, segment: str, price: Decimal) -> bool:
        return self.segment == segment and self.min_price <= price < self.max_price


class TickTable:
    """Ordered tick rules plus a fallback tick."""

    def __init__(self, rules: Iterable[PriceTickRule], default_tick: Decimal = Decimal("100")):
        self.rules: Tuple[PriceTickRule, ...] = tuple(rules)
        self.default_tick = Decimal(default_tick)

    @classmethod
    def from_config(cls, config: OrderRulesConfig) -> "TickTable":
        return cls(
            (PriceTickRule(r.segment, r.min_price, r.max_price, r.tick_size) for r in config.tick_rules),
            config.default_tick_size,
        )

    def tick_for(self, segment: str, price: Decimal) -> Decimal:
        segment = segment.upper()
        for rule in self.rules:
            if rule.matches(segment, price):
                return rule.tick_size
        return self.default_tick

    def round_to_tick(self, price: Decimal, segment: str) -> Decimal:
        """Snap ``price`` to the nearest tick (halves round up)."""
        price = Decimal(price)
        tick = self.tick_for(segment, price)
        steps = (price / tick).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return steps * tick

    def is_on_tick(self, price: Decimal, segment: str) -> bool:
        price = Decimal(price)
        return price % self.tick_for(segment, price) == 0
