"""
Session/Token Trust Binder

Issues short-lived access and long-lived refresh tokens bound to an
environment fingerprint, rotates refresh tokens single-use, and treats a
fingerprint mismatch on refresh as theft.

Token format: base64url(json claims) "." base64url(HMAC-SHA256)
Claims: typ, sub, email, role, sid, fp, ver, iat, exp, jti

Refresh token lifecycle:
    Active(fingerprint, version) → Rotated (on refresh)
                                 → Revoked (logout, theft, expiry)

Every verification failure is reported uniformly; callers cannot tell a
bad signature from an expired or revoked token.
"""

from __future__ import annotations

import base64
import hashlib
import hmac as _hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from persistence.token_store import RefreshTokenRecord, TokenStore
from trustcore.schemas.inputs import TokenClaims
from trustcore.schemas.outputs import TokenPair, TokenVerification


logger = logging.getLogger(__name__)


ACCESS = "access"
REFRESH = "refresh"
UNBOUND_FINGERPRINT = "unbound"

DEFAULT_ACCESS_TTL = 300
DEFAULT_REFRESH_TTL = 7 * 24 * 3600


class InvalidTokenError(Exception):
    """Raised by the codec for any malformed or forged token."""
    pass


# =============================================================================
# Codec
# =============================================================================

def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class TokenCodec:
    """HMAC-SHA256 signed compact tokens. Does not check expiry."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret.encode("utf-8")

    def _sign(self, body: str) -> str:
        return _b64encode(_hmac.new(self._secret, body.encode("ascii"), hashlib.sha256).digest())

    def encode(self, claims: Dict[str, Any]) -> str:
        body = _b64encode(json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            body, signature = token.split(".")
            if not _hmac.compare_digest(signature, self._sign(body)):
                raise InvalidTokenError("signature mismatch")
            claims = json.loads(_b64decode(body))
        except InvalidTokenError:
            raise
        except (ValueError, TypeError, UnicodeError) as e:
            raise InvalidTokenError(str(e)) from e

        if not isinstance(claims, dict):
            raise InvalidTokenError("claims are not an object")
        for name in ("typ", "sub", "fp", "ver", "iat", "exp", "jti"):
            if name not in claims:
                raise InvalidTokenError(f"missing claim {name}")
        return claims


# =============================================================================
# Refresh Outcome
# =============================================================================

class RefreshOutcome(str, Enum):
    ROTATED = "rotated"
    INVALID = "invalid"
    THEFT = "theft"


@dataclass
class RefreshResult:
    """Internal refresh result; callers only see ``pair`` or nothing."""
    outcome: RefreshOutcome
    pair: Optional[TokenPair] = None
    user_id: Optional[str] = None
    revoked_count: int = 0


# =============================================================================
# Binder
# =============================================================================

class TokenTrustBinder:
    """Issues, rotates, verifies and revokes fingerprint-bound tokens."""

    def __init__(
        self,
        secret: str,
        store: Optional[TokenStore] = None,
        access_ttl: int = DEFAULT_ACCESS_TTL,
        refresh_ttl: int = DEFAULT_REFRESH_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.codec = TokenCodec(secret)
        self.store = store or TokenStore()
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock

    # -------------------------------------------------------------------------
    # Issue
    # -------------------------------------------------------------------------

    def issue(self, claims: TokenClaims, version: int = 1) -> TokenPair:
        """Issue a new pair and store the refresh record."""
        now = self.clock()
        fingerprint_id = claims.fingerprint_id or UNBOUND_FINGERPRINT
        access_expires_at = now + self.access_ttl
        refresh_expires_at = now + self.refresh_ttl

        base = {
            "sub": claims.user_id,
            "email": claims.email,
            "role": claims.role,
            "sid": claims.session_id,
            "fp": fingerprint_id,
            "ver": version,
            "iat": now,
        }
        access_token = self.codec.encode({
            **base, "typ": ACCESS, "exp": access_expires_at, "jti": secrets.token_urlsafe(16),
        })
        refresh_token = self.codec.encode({
            **base, "typ": REFRESH, "exp": refresh_expires_at, "jti": secrets.token_urlsafe(16),
        })

        self.store.add(refresh_token, RefreshTokenRecord(
            user_id=claims.user_id,
            session_id=claims.session_id,
            fingerprint_id=fingerprint_id,
            version=version,
            expires_at=refresh_expires_at,
        ))
        logger.info(f"Issued token pair v{version} for user {claims.user_id}")

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl,
            fingerprint_id=fingerprint_id,
            session_id=claims.session_id,
            version=version,
            issued_at=now,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def refresh(self, refresh_token: str, fingerprint_id: Optional[str]) -> RefreshResult:
        """
        Rotate a refresh token.

        Mismatched fingerprint revokes every refresh token of the user and
        bars their earlier access tokens.
        """
        if self.store.is_revoked(refresh_token):
            return RefreshResult(RefreshOutcome.INVALID)

        now = self.clock()
        claims = self._verified_claims(refresh_token, REFRESH, now)
        if claims is None:
            return RefreshResult(RefreshOutcome.INVALID)

        presented = fingerprint_id or UNBOUND_FINGERPRINT

        with self.store.locked(refresh_token):
            # Re-checked inside the section so concurrent refreshes have one winner
            if self.store.is_revoked(refresh_token):
                return RefreshResult(RefreshOutcome.INVALID)
            record = self.store.get(refresh_token)
            if record is None or now >= record.expires_at or record.user_id != claims["sub"]:
                return RefreshResult(RefreshOutcome.INVALID)

            if not _hmac.compare_digest(record.fingerprint_id.encode(), presented.encode()):
                self.store.revoke_locked(refresh_token, record.expires_at)
                theft_user = record.user_id
            else:
                theft_user = None
                self.store.revoke_locked(refresh_token, record.expires_at)
                pair = self.issue(
                    TokenClaims(
                        user_id=record.user_id,
                        email=claims.get("email"),
                        role=claims.get("role") or "user",
                        session_id=record.session_id,
                        fingerprint_id=None if record.fingerprint_id == UNBOUND_FINGERPRINT
                        else record.fingerprint_id,
                    ),
                    version=record.version + 1,
                )

        if theft_user is not None:
            logger.warning(f"Fingerprint mismatch on refresh for user {theft_user}, revoking all tokens")
            revoked = 1 + self.revoke_all_for_user(theft_user)
            return RefreshResult(RefreshOutcome.THEFT, user_id=theft_user, revoked_count=revoked)

        return RefreshResult(RefreshOutcome.ROTATED, pair=pair, user_id=record.user_id)

    # -------------------------------------------------------------------------
    # Verify
    # -------------------------------------------------------------------------

    def verify_access(self, token: str) -> TokenVerification:
        now = self.clock()
        claims = self._verified_claims(token, ACCESS, now)
        if claims is None:
            return TokenVerification(valid=False)
        return TokenVerification(
            valid=True,
            user_id=claims["sub"],
            role=claims.get("role"),
            session_id=claims.get("sid"),
            expires_at=claims["exp"],
        )

    def verify_refresh(self, token: str) -> bool:
        now = self.clock()
        if self._verified_claims(token, REFRESH, now) is None:
            return False
        record = self.store.get(token)
        return record is not None and now < record.expires_at

    def _verified_claims(self, token: str, expected_type: str, now: float) -> Optional[Dict[str, Any]]:
        """Claims of a valid token of ``expected_type``, else None."""
        if self.store.is_revoked(token):
            return None
        try:
            claims = self.codec.decode(token)
        except InvalidTokenError as e:
            logger.debug(f"Token rejected: {e}")
            return None

        if claims["typ"] != expected_type:
            return None
        if now >= float(claims["exp"]):
            return None
        cutoff = self.store.user_cutoff(str(claims["sub"]))
        if cutoff is not None and float(claims["iat"]) <= cutoff:
            return None
        return claims

    # -------------------------------------------------------------------------
    # Revoke
    # -------------------------------------------------------------------------

    def revoke(self, token: str) -> bool:
        """Revoke one access or refresh token; False if it is not a genuine token."""
        try:
            claims = self.codec.decode(token)
        except InvalidTokenError:
            return False
        with self.store.locked(token):
            self.store.revoke_locked(token, float(claims["exp"]))
        return True

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every refresh token of a user and bar earlier access tokens."""
        now = self.clock()
        self.store.set_user_cutoff(user_id, now, keep_until=now + self.access_ttl)

        revoked = 0
        for token in self.store.tokens_for_user(user_id):
            with self.store.locked(token):
                record = self.store.get(token)
                if record is not None:
                    self.store.revoke_locked(token, record.expires_at)
                    revoked += 1
        logger.info(f"Revoked {revoked} refresh tokens for user {user_id}")
        return revoked

    def revoke_session(self, session_id: str) -> int:
        """Revoke every refresh token issued for a session."""
        revoked = 0
        for token in self.store.tokens_for_session(session_id):
            with self.store.locked(token):
                record = self.store.get(token)
                if record is not None:
                    self.store.revoke_locked(token, record.expires_at)
                    revoked += 1
        logger.info(f"Revoked {revoked} refresh tokens for session {session_id}")
        return revoked

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sweep(self) -> int:
        return self.store.sweep(self.clock())

    def close(self) -> None:
        self.store.close()
