"""
OrderGate - local pre-trade validation for Vietnamese equities.

CHECKS PERFORMED (in order, first failure wins):
1. Side is buy/sell
2. Session accepts orders (not LUNCH / CLOSED)
3. Order type, mapped to the session's concrete SSI type, is allowed now
4. Quantity (number or numeric string) is a positive integer multiple of the lot size
5. Limit orders: price positive and inside the daily floor/ceiling band

The gate never touches the network. It exists to fail fast before a round
trip the exchange would reject anyway.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from numbers import Number
from typing import Optional, Tuple, Union

from vnconnector.config import OrderRulesConfig, SessionState, SsiOrderType
from vnconnector.errors import (
    InvalidOrderParams,
    InvalidPrice,
    InvalidQuantity,
    MarketClosed,
    OrderTypeNotAllowed,
    PriceOutOfBand,
)
from vnconnector.logging import get_logger, LogStream
from vnconnector.market.fields import to_decimal
from vnconnector.market.instrument import Instrument
from vnconnector.market.ticks import TickTable
from vnconnector.time.session import SessionClock

GENERIC_MARKET = "market"
GENERIC_LIMIT = "limit"
SIDES = ("buy", "sell")


# ============================================================================
# GATE DECISION (Output from Gate)
# ============================================================================

@dataclass(frozen=True)
class PriceBand:
    """Daily price limits around the reference price."""
    reference: Optional[Decimal]
    floor: Decimal
    ceiling: Decimal
    limit_pct: Optional[Decimal] = None

    def contains(self, price: Decimal) -> bool:
        return self.floor <= price <= self.ceiling


@dataclass(frozen=True)
class GateDecision:
    """Accepted order, normalised to what the trading API expects."""
    order_type: SsiOrderType
    session: SessionState
    side: str
    quantity: int
    price: Optional[Decimal]
    band: Optional[PriceBand]

    @property
    def is_limit(self) -> bool:
        return self.order_type == SsiOrderType.LO


# ============================================================================
# ORDER GATE
# ============================================================================

class OrderGate:
    """
    Stateless pre-trade validator.

    Usage:
        gate = OrderGate(SessionClock(config.session), config.order_rules)
        decision = gate.check("limit", instrument, "buy", 200, Decimal("10500"), now)
    """

    def __init__(self, session_clock: SessionClock, rules: Optional[OrderRulesConfig] = None):
        self.session_clock = session_clock
        self.rules = rules or OrderRulesConfig()
        self.ticks = TickTable.from_config(self.rules)
        self.logger = get_logger(LogStream.ORDERS)

    def map_order_type(self, order_type: str, state: SessionState) -> SsiOrderType:
        """
        Generic market/limit -> concrete SSI type for ``state``.

        Concrete SSI types (ATO, ATC, LO, MTL, MAK, MP) pass through unchanged.
        """
        text = (order_type or "").strip()
        lowered = text.lower()
        if lowered == GENERIC_LIMIT:
            return SsiOrderType.LO
        if lowered == GENERIC_MARKET:
            if state == SessionState.PRE_OPEN:
                return SsiOrderType.ATO
            if state == SessionState.CLOSING:
                return SsiOrderType.ATC
            return SsiOrderType.MTL
        try:
            return SsiOrderType(text.upper())
        except ValueError:
            raise OrderTypeNotAllowed(f"unknown order type: {order_type!r}") from None

    def lot_size_for(self, instrument: Instrument) -> int:
        return instrument.lot_size if instrument.lot_size and instrument.lot_size > 0 else self.rules.default_lot_size

    def validate_quantity(self, quantity: Union[int, float, Decimal, str], lot_size: int) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, (Number, Decimal, str)):
            raise InvalidQuantity(f"quantity must be numeric, got {quantity!r}")
        dec = to_decimal(quantity)
        if dec is None:
            raise InvalidQuantity(f"quantity must be numeric, got {quantity!r}")
        if dec != dec.to_integral_value():
            raise InvalidQuantity(f"quantity must be a whole number of shares, got {quantity}")
        qty = int(dec)
        if qty <= 0:
            raise InvalidQuantity(f"quantity must be positive, got {qty}")
        if qty % lot_size != 0:
            raise InvalidQuantity(f"quantity {qty} is not a multiple of lot size {lot_size}")
        return qty

    def price_band(self, instrument: Instrument) -> Optional[PriceBand]:
        """
        Floor/ceiling for ``instrument``.

        Computed from the reference price when known, else taken from the
        upstream floor/ceiling, else None (band check skipped).
        """
        ref = instrument.reference_price
        if ref is not None and ref > 0:
            pct = self.rules.limit_pct_for(instrument.segment)
            return PriceBand(
                reference=ref,
                floor=self.ticks.round_to_tick(ref * (Decimal("1") - pct), instrument.segment),
                ceiling=self.ticks.round_to_tick(ref * (Decimal("1") + pct), instrument.segment),
                limit_pct=pct,
            )
        if instrument.floor is not None and instrument.ceiling is not None:
            return PriceBand(reference=None, floor=instrument.floor, ceiling=instrument.ceiling)
        return None

    def validate_price(self, price, instrument: Instrument) -> Tuple[Decimal, Optional[PriceBand]]:
        """
        Returns:
            (price snapped to tick, band or None)
        """
        dec = to_decimal(price)
        if dec is None or dec <= 0:
            raise InvalidPrice(f"limit orders need a positive price, got {price!r}")

        band = self.price_band(instrument)
        if band is None:
            self.logger.warning(
                "No reference price, skipping band check",
                extra={"symbol": instrument.symbol, "price": str(dec)},
            )
        elif not band.contains(dec):
            raise PriceOutOfBand(
                f"price {dec} outside [{band.floor}, {band.ceiling}] for {instrument.symbol}",
                floor=band.floor,
                ceiling=band.ceiling,
            )
        if self.ticks.is_on_tick(dec, instrument.segment):
            return dec, band
        snapped = self.ticks.round_to_tick(dec, instrument.segment)
        self.logger.info(
            "Limit price snapped to tick",
            extra={"symbol": instrument.symbol, "price": str(dec), "snapped": str(snapped)},
        )
        return snapped, band

    def check(
        self,
        order_type: str,
        instrument: Instrument,
        side: str,
        quantity,
        price=None,
        now: Optional[datetime] = None,
    ) -> GateDecision:
        """
        Validate one order.

        Raises:
            InvalidOrderParams, MarketClosed, OrderTypeNotAllowed,
            InvalidQuantity, InvalidPrice, PriceOutOfBand
        """
        side_norm = (side or "").strip().lower()
        if side_norm not in SIDES:
            raise InvalidOrderParams(f"side must be buy or sell, got {side!r}")

        if now is None:
            now = datetime.now(timezone.utc)
        state = self.session_clock.session_at(now)
        if not self.session_clock.is_open_at(now):
            raise MarketClosed(f"market is {state.value}, orders are not accepted")

        concrete = self.map_order_type(order_type, state)
        allowed = self.session_clock.allowed_order_types_for(state)
        if concrete not in allowed:
            raise OrderTypeNotAllowed(
                f"order type {concrete.value} not allowed in {state.value} session "
                f"(allowed: {', '.join(sorted(t.value for t in allowed))})"
            )

        qty = self.validate_quantity(quantity, self.lot_size_for(instrument))

        snapped, band = None, None
        if concrete == SsiOrderType.LO:
            snapped, band = self.validate_price(price, instrument)

        decision = GateDecision(
            order_type=concrete,
            session=state,
            side=side_norm,
            quantity=qty,
            price=snapped,
            band=band,
        )
        self.logger.debug(
            "Order passed gate",
            extra={"symbol": instrument.symbol, "order_type": concrete.value,
                   "session": state.value, "quantity": qty, "price": str(snapped) if snapped else None},
        )
        return decision
