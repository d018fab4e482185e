"""
Trust Engine Persistence Layer

Keyed stores with per-key exclusive sections, the token store, the
Redis rate-limit backend and the security event log.
"""

from .keyed_store import KeyedStore, StoreClosedError
from .token_store import RefreshTokenRecord, TokenStore

__all__ = [
    "KeyedStore",
    "StoreClosedError",
    "RefreshTokenRecord",
    "TokenStore",
]
