"""Credential acquisition and caching."""

from .token_cache import Credential, TokenCache, parse_jwt_exp_ms

__all__ = ["Credential", "TokenCache", "parse_jwt_exp_ms"]
