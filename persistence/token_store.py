"""
Token Store

Refresh-token records, the revocation set and per-user cutoffs.

- records: refresh token value → RefreshTokenRecord, in a keyed store so
  each rotation runs in the token's exclusive section
- revoked: token value → natural expiry; pruned once the token could no
  longer verify anyway
- user cutoffs: tokens of a user issued before the cutoff are rejected,
  which covers access tokens that have no record of their own
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .keyed_store import KeyedStore


logger = logging.getLogger(__name__)


@dataclass
class RefreshTokenRecord:
    """Server-side state of one live refresh token."""
    user_id: str
    session_id: Optional[str]
    fingerprint_id: str
    version: int
    expires_at: float


class TokenStore:
    """Injectable store for refresh records and revocations."""

    def __init__(self, records: Optional[KeyedStore[RefreshTokenRecord]] = None) -> None:
        self.records: KeyedStore[RefreshTokenRecord] = records or KeyedStore("refresh_tokens")
        self._revoked: Dict[str, float] = {}
        self._user_tokens: Dict[str, Set[str]] = defaultdict(set)
        self._user_cutoffs: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.Lock()  # Protects _revoked, _user_tokens, _user_cutoffs

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    @contextmanager
    def locked(self, token: str) -> Iterator[None]:
        with self.records.locked(token):
            yield

    def add(self, token: str, record: RefreshTokenRecord) -> None:
        self.records.set(token, record)
        with self._lock:
            self._user_tokens[record.user_id].add(token)

    def get(self, token: str) -> Optional[RefreshTokenRecord]:
        return self.records.get(token)

    def _remove(self, token: str) -> Optional[RefreshTokenRecord]:
        record = self.records.pop(token)
        if record is not None:
            with self._lock:
                tokens = self._user_tokens.get(record.user_id)
                if tokens is not None:
                    tokens.discard(token)
                    if not tokens:
                        del self._user_tokens[record.user_id]
        return record

    def tokens_for_user(self, user_id: str) -> List[str]:
        with self._lock:
            return list(self._user_tokens.get(user_id, ()))

    def tokens_for_session(self, session_id: str) -> List[str]:
        return [
            token for token, record in self.records.snapshot().items()
            if record.session_id == session_id
        ]

    # -------------------------------------------------------------------------
    # Revocation (caller holds the token's section)
    # -------------------------------------------------------------------------

    def revoke_locked(self, token: str, expires_at: float) -> Optional[RefreshTokenRecord]:
        """Mark revoked first, then drop the record."""
        with self._lock:
            self._revoked[token] = max(expires_at, self._revoked.get(token, 0.0))
        return self._remove(token)

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            return token in self._revoked

    def set_user_cutoff(self, user_id: str, cutoff: float, keep_until: float) -> None:
        with self._lock:
            self._user_cutoffs[user_id] = (cutoff, keep_until)

    def user_cutoff(self, user_id: str) -> Optional[float]:
        with self._lock:
            entry = self._user_cutoffs.get(user_id)
        return entry[0] if entry else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sweep(self, now: float) -> int:
        """Drop expired records, expired revocations and stale cutoffs."""
        expired_tokens = [
            token for token, record in self.records.snapshot().items()
            if now >= record.expires_at
        ]
        removed = 0
        for token in expired_tokens:
            with self.records.locked(token):
                record = self.records.get(token)
                if record is not None and now >= record.expires_at:
                    self._remove(token)
                    removed += 1

        with self._lock:
            stale = [token for token, exp in self._revoked.items() if now >= exp]
            for token in stale:
                del self._revoked[token]
            stale_cutoffs = [u for u, (_, keep) in self._user_cutoffs.items() if now >= keep]
            for user_id in stale_cutoffs:
                del self._user_cutoffs[user_id]

        if removed or stale:
            logger.debug(f"Token sweep: {removed} expired records, {len(stale)} revocations pruned")
        return removed + len(stale)

    @property
    def revoked_count(self) -> int:
        with self._lock:
            return len(self._revoked)

    def close(self) -> None:
        self.records.close()
        with self._lock:
            self._revoked.clear()
            self._user_tokens.clear()
            self._user_cutoffs.clear()
