"""
Trust Orchestrator

Engine facade wiring the trust components together:

    Telemetry → Features ─┐
    Trap state ───────────┼→ Fusion → TrustAssessment → Security Event Log
    Probes → Fingerprint ─┘

    Lockout, Rate Limiter   independent gates, evaluated before fusion
    Injection Detector      pattern scan of request values with per-identifier tracking
    Token Binder            fingerprint-bound issue / rotate / revoke

Every collaborator is constructed by the caller or from EngineConfig and
injected; nothing here is module-global. Policy outcomes come back as
typed decisions, never exceptions.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from persistence.audit_logger import SecurityEventLog
from persistence.keyed_store import KeyedStore
from persistence.token_store import TokenStore
from trustcore.config import EngineConfig
from trustcore.models.fusion import TrustFusionEngine, severity_for
from trustcore.models.honeypot import DECOY_ENDPOINTS, HoneypotEvaluator, decoy_response
from trustcore.models.injection import InjectionAttemptTracker, InjectionDetector
from trustcore.models.lockout import BruteForceLockout
from trustcore.models.rate_limit import InMemoryRateLimitBackend, RateLimitBackend, RateLimiter
from trustcore.models.tokens import RefreshOutcome, TokenTrustBinder
from trustcore.processors.context import RequestContextProcessor
from trustcore.processors.features import StatisticalSignalExtractor
from trustcore.processors.fingerprint import Fingerprint, FingerprintBuilder
from trustcore.processors.telemetry import TelemetryCollector
from trustcore.schemas.inputs import TelemetryBatchPayload, TelemetryEvent, TokenClaims
from trustcore.schemas.outputs import (
    EventStatistics,
    EventType,
    InjectionReport,
    LockoutStatus,
    RateLimitDecision,
    Recommendation,
    SecurityEvent,
    Severity,
    Signal,
    TokenPair,
    TokenVerification,
    TrapResult,
    TrustAssessment,
)
from trustcore.state_manager import SessionRegistry


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

UNPROBED_SIGNAL = Signal(
    name="environment_unprobed",
    score=0,
    detail="No environment probes supplied; environment checks skipped",
)

# Honeypot scores at or above this are logged even without filled fields
HONEYPOT_LOG_SCORE = 50

# Failures at or above this count are logged as medium severity
FAILED_AUTH_MEDIUM_COUNT = 3


def _build_rate_limit_backend(config: EngineConfig) -> RateLimitBackend:
    if config.rate_limit_backend == "redis":
        from persistence.redis_rate_limit import RedisRateLimitBackend
        return RedisRateLimitBackend()
    return InMemoryRateLimitBackend(KeyedStore("rate_limit"))


# =============================================================================
# Orchestrator
# =============================================================================

class TrustOrchestrator:
    """
    Trust-scoring and adaptive access-control engine.

    All public methods are synchronous and safe to call concurrently.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        registry: Optional[SessionRegistry] = None,
        collector: Optional[TelemetryCollector] = None,
        extractor: Optional[StatisticalSignalExtractor] = None,
        honeypot: Optional[HoneypotEvaluator] = None,
        fingerprints: Optional[FingerprintBuilder] = None,
        fusion: Optional[TrustFusionEngine] = None,
        lockout: Optional[BruteForceLockout] = None,
        rate_limiter: Optional[RateLimiter] = None,
        tokens: Optional[TokenTrustBinder] = None,
        injection: Optional[InjectionDetector] = None,
        injection_tracker: Optional[InjectionAttemptTracker] = None,
        events: Optional[SecurityEventLog] = None,
        context_processor: Optional[RequestContextProcessor] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize orchestrator; missing collaborators are built from config."""
        self.config = config or EngineConfig()
        self.clock = clock

        self.registry = registry or SessionRegistry(
            idle_ttl=self.config.session_idle_ttl,
            max_sessions=self.config.max_sessions,
            clock=clock,
        )
        self.collector = collector or TelemetryCollector()
        self.extractor = extractor or StatisticalSignalExtractor()
        self.honeypot = honeypot or HoneypotEvaluator()
        self.fingerprints = fingerprints or FingerprintBuilder()
        self.fusion = fusion or TrustFusionEngine()
        self.lockout = lockout or BruteForceLockout(
            KeyedStore("lockout"),
            threshold=self.config.lockout_threshold,
            window_seconds=self.config.lockout_window,
            lock_seconds=self.config.lockout_duration,
            clock=clock,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            _build_rate_limit_backend(self.config), clock=clock
        )
        self.tokens = tokens or TokenTrustBinder(
            self.config.token_secret,
            TokenStore(),
            access_ttl=self.config.access_token_ttl,
            refresh_ttl=self.config.refresh_token_ttl,
            clock=clock,
        )
        self.injection = injection or InjectionDetector()
        self.injection_tracker = injection_tracker or InjectionAttemptTracker(
            KeyedStore("injection"), clock=clock
        )
        self.events = events or SecurityEventLog(max_events=self.config.max_events, clock=clock)
        self.context_processor = context_processor or RequestContextProcessor(self.config.geoip_path)

        logger.info("TrustOrchestrator initialized")

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    def record_telemetry(self, session_id: str, event: TelemetryEvent) -> bool:
        """Append one event to the session's buffers. Never raises."""
        session = self.registry.get_or_create(session_id)
        return self.collector.record(session, event, now=self.clock())

    def record_batch(self, payload: TelemetryBatchPayload) -> int:
        """Append a batch; returns the number of events stored."""
        session = self.registry.get_or_create(payload.session_id)
        now = self.clock()
        return sum(1 for event in payload.events if self.collector.record(session, event, now=now))

    def end_session(self, session_id: str) -> bool:
        """Discard a session's telemetry."""
        return self.registry.end(session_id)

    # -------------------------------------------------------------------------
    # Honeypot
    # -------------------------------------------------------------------------

    def evaluate_honeypot(
        self,
        session_id: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> TrapResult:
        """Trap-field and submit-speed check for a session."""
        session = self.registry.get_or_create(session_id)
        result = self._trap_result(session)

        if result.fields_filled or result.score >= HONEYPOT_LOG_SCORE:
            self.events.append(
                EventType.HONEYPOT_TRIGGERED,
                severity_for(result.score),
                identifier_context=self._context(context, session_id),
                signals=result.signals,
                snapshot=result.model_dump(by_alias=True),
                details=f"Honeypot trap triggered for session {session_id}",
            )
        return result

    def _trap_result(self, session: Any) -> TrapResult:
        with session.lock:
            trap_fields = set(session.trap_fields_filled)
            started = session.form_started_at
        elapsed_ms = max(0.0, (self.clock() - started) * 1000.0)
        return self.honeypot.evaluate(trap_fields, elapsed_ms)

    # -------------------------------------------------------------------------
    # Trust Assessment
    # -------------------------------------------------------------------------

    def assess_trust(
        self,
        session_id: str,
        probes: Optional[Mapping[str, str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> TrustAssessment:
        """
        Fuse honeypot, behavioral and environment evidence for a session.

        ``probes`` None skips environment checks; a zero-score
        "environment_unprobed" signal records that they were skipped.
        """
        now = self.clock()
        session = self.registry.get_or_create(session_id)

        trap_result = self._trap_result(session)
        features = self.extractor.extract(session, now=now)

        fingerprint: Optional[Fingerprint] = None
        if probes is None:
            environment_signals: List[Signal] = [UNPROBED_SIGNAL]
        else:
            merged = dict(probes)
            user_agent = (context or {}).get("user_agent")
            if user_agent and "user_agent" not in merged:
                merged["user_agent"] = user_agent
            fingerprint = self.fingerprints.build(merged, now=now)
            environment_signals = self.fingerprints.assess(fingerprint)

            bound = self.registry.bind_fingerprint(session_id, fingerprint)
            if bound is not None:
                drift = self.fingerprints.drift_signal(bound, fingerprint)
                if drift is not None:
                    environment_signals.append(drift)

        assessment = self.fusion.fuse(trap_result, features, environment_signals)

        logger.info(
            f"Assessment {session_id}: score={assessment.score} "
            f"recommendation={assessment.recommendation.value} signals={len(assessment.signals)}"
        )

        event_type = self._assessment_event_type(trap_result, assessment)
        if event_type is not None:
            self.events.append(
                event_type,
                severity_for(assessment.bot_confidence),
                identifier_context=self._context(context, session_id),
                signals=assessment.signals,
                snapshot={
                    "score": assessment.score,
                    "recommendation": assessment.recommendation.value,
                    "fingerprint_id": fingerprint.id if fingerprint else None,
                    "trap": trap_result.model_dump(by_alias=True),
                    "features": features.to_dict(),
                },
                details=f"Trust {assessment.score}, {assessment.recommendation.value}",
            )
        return assessment

    @staticmethod
    def _assessment_event_type(
        trap_result: TrapResult, assessment: TrustAssessment
    ) -> Optional[EventType]:
        if trap_result.fields_filled:
            return EventType.HONEYPOT_TRIGGERED
        if assessment.is_bot:
            return EventType.BOT_DETECTED
        if assessment.recommendation != Recommendation.ALLOW:
            return EventType.SUSPICIOUS_BEHAVIOR
        return None

    # -------------------------------------------------------------------------
    # Gates
    # -------------------------------------------------------------------------

    def check_lockout(self, identifier: str) -> LockoutStatus:
        return self.lockout.check(identifier)

    def record_attempt(
        self,
        identifier: str,
        success: bool,
        context: Optional[Dict[str, Any]] = None,
    ) -> LockoutStatus:
        """Apply an authentication outcome to the lockout state."""
        status = self.lockout.record_attempt(identifier, success)
        ctx = self._context(context, identifier=identifier)

        if not status.accepted:
            self.events.append(
                EventType.FAILED_AUTH, Severity.HIGH,
                identifier_context=ctx,
                snapshot=status.model_dump(by_alias=True),
                details="Authentication attempt during active lockout",
            )
        elif not success:
            if status.locked:
                severity = Severity.HIGH
            elif status.fail_count >= FAILED_AUTH_MEDIUM_COUNT:
                severity = Severity.MEDIUM
            else:
                severity = Severity.LOW
            self.events.append(
                EventType.FAILED_AUTH, severity,
                identifier_context=ctx,
                snapshot=status.model_dump(by_alias=True),
                details=f"Failed authentication, {status.attempts_left} attempts left",
            )
        else:
            self.events.append(
                EventType.LOGIN_ATTEMPT, Severity.LOW,
                identifier_context=ctx,
                details="Successful authentication",
            )
        return status

    def check_rate_limit(
        self,
        identifier: str,
        policy_name: str = "api",
        context: Optional[Dict[str, Any]] = None,
    ) -> RateLimitDecision:
        """
        Count one request against a policy.

        Raises:
            ValueError: unknown policy name.
        """
        decision = self.rate_limiter.check(identifier, policy_name)
        if not decision.allowed:
            self.events.append(
                EventType.SUSPICIOUS_BEHAVIOR, Severity.MEDIUM,
                identifier_context=self._context(context, identifier=identifier),
                snapshot=decision.model_dump(by_alias=True),
                details=f"Rate limit '{policy_name}' exceeded",
            )
        return decision

    def inspect_input(
        self,
        value: Any,
        identifier: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> InjectionReport:
        """
        Scan request data for injection patterns.

        Blocked findings count against ``identifier``; the report carries
        the identifier's attempt count and whether it is now blocked.
        """
        report = self.injection.inspect(value)

        if not report.blocked:
            attempts = self.injection_tracker.attempts(identifier)
            return report.model_copy(update={
                "attempts": attempts,
                "identifier_blocked": attempts >= self.injection_tracker.block_count,
            })

        attempts = self.injection_tracker.record(identifier)
        identifier_blocked = attempts >= self.injection_tracker.block_count
        report = report.model_copy(update={
            "attempts": attempts,
            "identifier_blocked": identifier_blocked,
        })

        logger.warning(
            f"Injection attempt from {identifier}: {report.kind.value} "
            f"at '{report.path}' ({len(report.patterns)} patterns)"
        )
        self.events.append(
            EventType.INJECTION_ATTEMPT,
            Severity.CRITICAL if identifier_blocked else report.severity,
            identifier_context={**self._context(context), "identifier": identifier},
            snapshot=report.model_dump(mode="json", by_alias=True),
            details=(
                f"{report.kind.value.upper()} injection attempt: {', '.join(report.patterns)}"
            ),
        )
        return report

    # -------------------------------------------------------------------------
    # Tokens
    # -------------------------------------------------------------------------

    def issue_token_pair(self, claims: TokenClaims) -> TokenPair:
        return self.tokens.issue(claims)

    def refresh_token_pair(
        self,
        refresh_token: str,
        fingerprint_id: Optional[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[TokenPair]:
        """Rotate a refresh token; None for every kind of failure."""
        result = self.tokens.refresh(refresh_token, fingerprint_id)

        if result.outcome == RefreshOutcome.THEFT:
            self.events.append(
                EventType.SUSPICIOUS_BEHAVIOR, Severity.CRITICAL,
                identifier_context=self._context(context, user_id=result.user_id),
                snapshot={"revoked_tokens": result.revoked_count},
                details="Refresh token presented from a different environment, all user tokens revoked",
            )
        elif result.outcome == RefreshOutcome.INVALID:
            self.events.append(
                EventType.FAILED_AUTH, Severity.MEDIUM,
                identifier_context=self._context(context),
                details="Invalid refresh token presented",
            )
        return result.pair

    def verify_access_token(self, token: str) -> TokenVerification:
        return self.tokens.verify_access(token)

    def revoke_token(self, token: str) -> bool:
        return self.tokens.revoke(token)

    def revoke_all_for_user(self, user_id: str) -> int:
        return self.tokens.revoke_all_for_user(user_id)

    def revoke_session(self, session_id: str) -> int:
        """Revoke a session's tokens and discard its telemetry."""
        revoked = self.tokens.revoke_session(session_id)
        self.registry.end(session_id)
        return revoked

    # -------------------------------------------------------------------------
    # Decoy Endpoints
    # -------------------------------------------------------------------------

    def trigger_decoy(self, path: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Log a decoy endpoint hit and return its fabricated payload.

        Raises:
            KeyError: ``path`` is not a registered decoy.
        """
        trap_type = DECOY_ENDPOINTS[path]
        self.events.append(
            EventType.HONEYPOT_TRIGGERED, Severity.CRITICAL,
            identifier_context=self._context(context, path=path),
            details=f"Decoy endpoint hit: {path} ({trap_type.value})",
        )
        return decoy_response(trap_type)

    # -------------------------------------------------------------------------
    # Security Events
    # -------------------------------------------------------------------------

    def query_events(self, **filters: Any) -> List[SecurityEvent]:
        return self.events.query(**filters)

    def event_statistics(self) -> EventStatistics:
        return self.events.statistics()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def sweep(self) -> Dict[str, int]:
        """Remove expired state from every store."""
        removed = {
            "lockout": self.lockout.sweep(),
            "rate_limit": self.rate_limiter.sweep(),
            "tokens": self.tokens.sweep(),
            "injection": self.injection_tracker.sweep(),
            "sessions": self.registry.sweep(),
        }
        logger.debug(f"Sweep complete: {removed}")
        return removed

    def flush_events(self) -> int:
        return self.events.flush_pending()

    def close(self) -> None:
        self.events.close()
        self.lockout.close()
        self.rate_limiter.close()
        self.tokens.close()
        self.injection_tracker.close()
        self.registry.close()
        self.context_processor.close()
        logger.info("TrustOrchestrator closed")

    @staticmethod
    def _context(context: Optional[Dict[str, Any]], session_id: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
        ctx = dict(context or {})
        if session_id is not None:
            ctx.setdefault("session_id", session_id)
        for key, value in extra.items():
            if value is not None:
                ctx.setdefault(key, value)
        return ctx
