"""
Orchestrator Integration Tests

Tests end-to-end flows through TrustOrchestrator with in-memory stores
and a fake clock:

1. Human session with a real browser environment → allow, nothing logged
2. Headless automation → block, bot_detected
3. Honeypot fill → honeypot_triggered
4. Zero-event session → timing rule still applies
5. More interaction channels never lower trust
6. Lockout, rate limit and token theft scenarios with their audit events
"""

import pytest

from trustcore.orchestrator import TrustOrchestrator, UNPROBED_SIGNAL
from trustcore.schemas.inputs import TelemetryBatchPayload, TelemetryKind, TokenClaims
from trustcore.schemas.outputs import EventType, Recommendation, Severity

from tests.conftest import (
    HEADLESS_PROBES,
    HUMAN_PROBES,
    human_activity,
    human_clicks,
    human_keystrokes,
    human_pointer_moves,
    human_scrolls,
    key_event,
    simple_event,
    trap_event,
)


CONTEXT = {"identifier": "203.0.113.7:Mozilla/5.0", "ip": "203.0.113.7"}


def feed(orchestrator, session_id, events):
    return orchestrator.record_batch(TelemetryBatchPayload(session_id=session_id, events=events))


def signal_names(assessment):
    return [s.name for s in assessment.signals]


# =============================================================================
# Trust Assessment Scenarios
# =============================================================================

class TestAssessment:

    def test_human_session_allowed(self, orchestrator, clock):
        assert feed(orchestrator, "human", human_activity()) == len(human_activity())
        clock.advance(30)

        assessment = orchestrator.assess_trust("human", HUMAN_PROBES, CONTEXT)

        assert assessment.score == 100
        assert assessment.is_bot is False
        assert assessment.recommendation == Recommendation.ALLOW
        assert assessment.signals == []
        assert len(orchestrator.events) == 0

    def test_headless_browser_blocked(self, orchestrator, clock):
        feed(orchestrator, "bot", human_activity())
        clock.advance(30)

        assessment = orchestrator.assess_trust("bot", HEADLESS_PROBES, CONTEXT)

        assert assessment.score == 0
        assert assessment.is_bot is True
        assert assessment.recommendation == Recommendation.BLOCK
        assert "webdriver_present" in signal_names(assessment)

        events = orchestrator.query_events(event_type=EventType.BOT_DETECTED)
        assert len(events) == 1
        assert events[0].severity == Severity.CRITICAL
        assert events[0].identifier_context["session_id"] == "bot"
        assert events[0].identifier_context["identifier"] == CONTEXT["identifier"]
        assert events[0].snapshot["fingerprint_id"] is not None

    def test_honeypot_fill_is_logged(self, orchestrator, clock):
        feed(orchestrator, "filler", human_activity() + [trap_event("website")])
        clock.advance(30)

        assessment = orchestrator.assess_trust("filler", HUMAN_PROBES, CONTEXT)

        assert assessment.score == 65
        assert assessment.recommendation == Recommendation.CHALLENGE
        events = orchestrator.query_events(event_type=EventType.HONEYPOT_TRIGGERED)
        assert len(events) == 1
        assert events[0].severity == Severity.MEDIUM

    def test_instant_fill_blocks(self, orchestrator):
        feed(orchestrator, "instant", [simple_event(TelemetryKind.RENDER), trap_event("fax")])

        assessment = orchestrator.assess_trust("instant")

        assert assessment.score == 0
        assert signal_names(assessment)[0] == "honeypot_instant_fill"

    def test_zero_events_still_timed(self, orchestrator):
        assessment = orchestrator.assess_trust("empty")

        assert "honeypot_instant_submit" in signal_names(assessment)
        assert assessment.score == 50
        assert assessment.is_bot is False
        assert assessment.recommendation == Recommendation.CHALLENGE
        assert UNPROBED_SIGNAL in assessment.signals

        events = orchestrator.query_events(event_type=EventType.SUSPICIOUS_BEHAVIOR)
        assert events[0].severity == Severity.HIGH

    def test_behavior_alone_only_challenges(self, orchestrator, clock):
        robotic = [simple_event(TelemetryKind.RENDER)]
        robotic += [key_event(100, 120, i * 220.0) for i in range(60)]
        feed(orchestrator, "robotic", robotic)
        clock.advance(30)

        assessment = orchestrator.assess_trust("robotic", HUMAN_PROBES, CONTEXT)

        # Constant timing, one channel, no scroll, no corrections; capped at 60
        assert len(assessment.signals) == 4
        assert assessment.score == 40
        assert assessment.recommendation == Recommendation.CHALLENGE

    def test_nan_timing_does_not_silence_rules(self, orchestrator, clock):
        raw = [{"kind": "render"}]
        raw += [{"kind": "key", "key": {"dwell_ms": 5, "flight_ms": 100, "ts": i * 105.0}} for i in range(60)]
        raw.append({"kind": "key", "key": {"dwell_ms": float("nan"), "flight_ms": 100, "ts": 6400.0}})
        stored = orchestrator.record_batch(
            TelemetryBatchPayload.model_validate({"session_id": "nan", "events": raw})
        )
        clock.advance(30)

        assessment = orchestrator.assess_trust("nan", HUMAN_PROBES, CONTEXT)

        assert stored == 61
        assert "keystroke_dwell_too_short" in signal_names(assessment)
        assert "keystroke_timing_too_consistent" in signal_names(assessment)
        assert assessment.score <= 60

    def test_user_agent_taken_from_context(self, orchestrator, clock):
        feed(orchestrator, "ua", human_activity())
        clock.advance(30)
        probes = {k: v for k, v in HUMAN_PROBES.items() if k != "user_agent"}
        context = {**CONTEXT, "user_agent": HEADLESS_PROBES["user_agent"]}

        assessment = orchestrator.assess_trust("ua", probes, context)

        assert "headless_user_agent" in signal_names(assessment)

    def test_environment_drift(self, orchestrator, clock):
        feed(orchestrator, "drift", human_activity())
        clock.advance(30)
        orchestrator.assess_trust("drift", HUMAN_PROBES, CONTEXT)

        moved = {**HUMAN_PROBES, "timezone": "Asia/Tokyo"}
        assessment = orchestrator.assess_trust("drift", moved, CONTEXT)

        assert signal_names(assessment) == ["environment_drift"]
        assert assessment.score == 80


class TestMonotonicity:
    """Adding interaction channels never lowers the trust score."""

    def test_channels_non_decreasing(self, orchestrator, clock):
        channels = [
            human_keystrokes(count=5),
            human_pointer_moves(count=5),
            human_clicks()[:2],
            human_scrolls(count=2),
        ]

        scores = []
        for n in range(len(channels) + 1):
            session_id = f"mono-{n}"
            events = [simple_event(TelemetryKind.RENDER)]
            for channel in channels[:n]:
                events += channel
            feed(orchestrator, session_id, events)
            clock.advance(15)
            scores.append(orchestrator.assess_trust(session_id).score)

        assert scores == sorted(scores)
        assert scores[0] == 50
        assert scores[-1] == 100


# =============================================================================
# Honeypot & Decoys
# =============================================================================

class TestHoneypot:

    def test_evaluate_clean(self, orchestrator, clock):
        feed(orchestrator, "form", [simple_event(TelemetryKind.RENDER)])
        clock.advance(10)

        result = orchestrator.evaluate_honeypot("form", CONTEXT)

        assert result.score == 0
        assert len(orchestrator.events) == 0

    def test_evaluate_filled(self, orchestrator, clock):
        feed(orchestrator, "form", [simple_event(TelemetryKind.RENDER), trap_event("website")])
        clock.advance(1.5)

        result = orchestrator.evaluate_honeypot("form", CONTEXT)

        assert result.fields_filled == ["website"]
        assert result.timing_anomaly is True
        assert result.score == 75
        event = orchestrator.query_events(event_type=EventType.HONEYPOT_TRIGGERED)[0]
        assert event.severity == Severity.CRITICAL

    def test_decoy_hit(self, orchestrator):
        payload = orchestrator.trigger_decoy("/api/admin/users/all", CONTEXT)

        assert "users" in payload
        event = orchestrator.query_events()[0]
        assert event.type == EventType.HONEYPOT_TRIGGERED
        assert event.severity == Severity.CRITICAL
        assert event.identifier_context["path"] == "/api/admin/users/all"

    def test_unknown_decoy(self, orchestrator):
        with pytest.raises(KeyError):
            orchestrator.trigger_decoy("/api/public/info")


# =============================================================================
# Gates
# =============================================================================

class TestLockoutScenario:

    def test_lockout_flow(self, orchestrator, clock):
        identifier = CONTEXT["identifier"]
        severities = []
        for _ in range(5):
            status = orchestrator.record_attempt(identifier, False, CONTEXT)
            severities.append(orchestrator.query_events(limit=1)[0].severity)

        assert status.locked is True
        assert severities == [
            Severity.LOW, Severity.LOW, Severity.MEDIUM, Severity.MEDIUM, Severity.HIGH,
        ]

        rejected = orchestrator.record_attempt(identifier, True, CONTEXT)
        assert rejected.accepted is False
        assert rejected.locked is True

        clock.advance(30 * 60)
        assert orchestrator.check_lockout(identifier).locked is False

        status = orchestrator.record_attempt(identifier, True, CONTEXT)
        assert status.accepted is True
        assert orchestrator.query_events(limit=1)[0].type == EventType.LOGIN_ATTEMPT


class TestRateLimitScenario:

    def test_sixty_first_request(self, orchestrator):
        for _ in range(60):
            assert orchestrator.check_rate_limit("client", "api", CONTEXT).allowed

        decision = orchestrator.check_rate_limit("client", "api", CONTEXT)

        assert decision.allowed is False
        assert decision.remaining == 0
        events = orchestrator.query_events(event_type=EventType.SUSPICIOUS_BEHAVIOR)
        assert len(events) == 1
        assert events[0].severity == Severity.MEDIUM

    def test_unknown_policy(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.check_rate_limit("client", "nope")


# =============================================================================
# Tokens
# =============================================================================

class TestTokenScenario:

    def test_theft_revokes_everything(self, orchestrator):
        claims = TokenClaims(user_id="patient-42", session_id="s1", fingerprint_id="fp-home")
        first = orchestrator.issue_token_pair(claims)
        second = orchestrator.issue_token_pair(claims)

        assert orchestrator.refresh_token_pair(first.refresh_token, "fp-elsewhere", CONTEXT) is None

        event = orchestrator.query_events(limit=1)[0]
        assert event.severity == Severity.CRITICAL
        assert event.snapshot["revoked_tokens"] == 2
        assert orchestrator.refresh_token_pair(second.refresh_token, "fp-home") is None
        assert orchestrator.verify_access_token(second.access_token).valid is False

    def test_rotation(self, orchestrator):
        claims = TokenClaims(user_id="patient-42", session_id="s1", fingerprint_id="fp-home")
        pair = orchestrator.issue_token_pair(claims)

        rotated = orchestrator.refresh_token_pair(pair.refresh_token, "fp-home")

        assert rotated is not None
        assert rotated.version == 2
        assert orchestrator.refresh_token_pair(pair.refresh_token, "fp-home") is None
        invalid = orchestrator.query_events(event_type=EventType.FAILED_AUTH)
        assert len(invalid) == 1

    def test_revoke_session_ends_telemetry(self, orchestrator):
        feed(orchestrator, "s1", human_keystrokes(count=3))
        orchestrator.issue_token_pair(TokenClaims(user_id="u", session_id="s1"))

        assert orchestrator.revoke_session("s1") == 1
        assert orchestrator.registry.get("s1") is None


# =============================================================================
# Injection Inspection
# =============================================================================

class TestInjection:

    def test_clean_input_not_logged(self, orchestrator):
        report = orchestrator.inspect_input({"name": "Jane"}, "ip-clean", CONTEXT)

        assert report.detected is False
        assert report.attempts == 0
        assert len(orchestrator.events) == 0

    def test_attempts_logged_and_identifier_blocked(self, orchestrator):
        payload = {"username": "' OR 1=1 --"}
        reports = [orchestrator.inspect_input(payload, "ip-bad", CONTEXT) for _ in range(3)]

        assert [r.attempts for r in reports] == [1, 2, 3]
        assert [r.identifier_blocked for r in reports] == [False, False, True]

        events = orchestrator.query_events(event_type=EventType.INJECTION_ATTEMPT)
        assert len(events) == 3
        # Newest first
        assert [e.severity for e in events] == [Severity.CRITICAL, Severity.MEDIUM, Severity.MEDIUM]
        assert events[0].identifier_context["identifier"] == "ip-bad"
        assert events[0].identifier_context["ip"] == CONTEXT["ip"]
        assert events[0].snapshot["path"] == "username"

    def test_blocked_identifier_reported_on_clean_input(self, orchestrator):
        for _ in range(3):
            orchestrator.inspect_input({"$where": "1"}, "ip-op", CONTEXT)

        report = orchestrator.inspect_input("hello", "ip-op", CONTEXT)

        assert report.detected is False
        assert report.identifier_blocked is True
        assert len(orchestrator.query_events(event_type=EventType.INJECTION_ATTEMPT)) == 3

    def test_low_finding_not_counted(self, orchestrator):
        report = orchestrator.inspect_input("select", "ip-low", CONTEXT)

        assert report.detected is True
        assert report.blocked is False
        assert report.attempts == 0
        assert len(orchestrator.events) == 0


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_sweep_reports_every_store(self, orchestrator, clock):
        feed(orchestrator, "idle", human_keystrokes(count=3))
        orchestrator.record_attempt("x", False)
        orchestrator.check_rate_limit("x", "api")

        clock.advance(31 * 60)
        removed = orchestrator.sweep()

        assert set(removed) == {"lockout", "rate_limit", "tokens", "injection", "sessions"}
        assert removed["sessions"] == 1
        assert removed["lockout"] == 1
        assert removed["rate_limit"] == 1

    def test_statistics(self, orchestrator):
        orchestrator.trigger_decoy("/.env", CONTEXT)
        orchestrator.record_attempt("y", False, {"identifier": "y"})

        stats = orchestrator.event_statistics()

        assert stats.total == 2
        assert stats.unique_identifiers == 2

    def test_default_construction(self):
        engine = TrustOrchestrator()
        try:
            assert engine.config.token_secret
            assert engine.check_lockout("anyone").locked is False
        finally:
            engine.close()
