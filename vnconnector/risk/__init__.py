"""Pre-trade validation."""

from .gate import GateDecision, OrderGate, PriceBand, GENERIC_LIMIT, GENERIC_MARKET

__all__ = ["GateDecision", "OrderGate", "PriceBand", "GENERIC_LIMIT", "GENERIC_MARKET"]
