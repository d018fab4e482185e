"""
Trust Engine Test Suite - Shared Pytest Fixtures

This conftest.py provides fixtures for all test categories including:
- A controllable clock for window, lock and expiry tests
- Redis connection and cleanup for backend tests
- GeoIP mocking utilities
- Engine component instances and telemetry builders

Usage:
    pytest tests/ -v -s
"""

import os
import pytest
from contextlib import contextmanager
from typing import Dict, List, Optional
from unittest.mock import patch, MagicMock

from trustcore.config import EngineConfig
from trustcore.orchestrator import TrustOrchestrator
from trustcore.processors.features import FeatureSet
from trustcore.processors.context import RequestContextProcessor
from trustcore.schemas.inputs import (
    KeyEvent,
    PointerEvent,
    PointerKind,
    TelemetryEvent,
    TelemetryKind,
)

# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

# =============================================================================
# Telemetry Builders
# =============================================================================

def key_event(dwell_ms: float, flight_ms: float, ts: float, key_class: str = "char") -> TelemetryEvent:
    return TelemetryEvent(
        kind=TelemetryKind.KEY,
        key=KeyEvent(key_class=key_class, dwell_ms=dwell_ms, flight_ms=flight_ms, ts=ts),
    )

def pointer_event(
    x: float,
    y: float,
    ts: float,
    kind: PointerKind = PointerKind.MOVE,
    velocity: Optional[float] = None,
    acceleration: Optional[float] = None,
    angle: Optional[float] = None,
) -> TelemetryEvent:
    return TelemetryEvent(
        kind=TelemetryKind.POINTER,
        pointer=PointerEvent(
            x=x, y=y, ts=ts, kind=kind,
            velocity=velocity, acceleration=acceleration, angle=angle,
        ),
    )

def trap_event(field_name: str) -> TelemetryEvent:
    return TelemetryEvent(kind=TelemetryKind.TRAP, field_name=field_name)

def simple_event(kind: TelemetryKind) -> TelemetryEvent:
    return TelemetryEvent(kind=kind)

def human_keystrokes(count: int = 60, backspace_every: int = 15) -> List[TelemetryEvent]:
    """Varied dwell/flight timing with occasional corrections (~40 wpm)."""
    events = []
    ts = 0.0
    for i in range(count):
        dwell = 80.0 + (i * 37) % 60
        flight = 0.0 if i == 0 else 100.0 + (i * 53) % 150
        ts += dwell + flight
        key_class = "backspace" if i % backspace_every == 7 else "char"
        events.append(key_event(dwell, flight, ts, key_class))
    return events

def human_pointer_moves(count: int = 40) -> List[TelemetryEvent]:
    """Curved, jittery movement with explicit kinematics."""
    events = []
    velocity_prev = 0.0
    ts = 0.0
    for i in range(count):
        velocity = 400.0 + 150.0 * ((i * 7) % 5 - 2)
        angle = float((i * 37) % 360 - 180)
        ts += 16.0 + (i * 7) % 25
        events.append(pointer_event(
            x=10.0 * i, y=5.0 * i, ts=ts,
            velocity=velocity, acceleration=velocity - velocity_prev, angle=angle,
        ))
        velocity_prev = velocity
    return events

def human_clicks() -> List[TelemetryEvent]:
    return [
        pointer_event(100, 200, ts, PointerKind.CLICK)
        for ts in (1000.0, 1800.0, 3100.0, 3750.0, 5850.0)
    ]

def human_scrolls(count: int = 5) -> List[TelemetryEvent]:
    return [pointer_event(0, 120.0 * i, 500.0 * i, PointerKind.SCROLL) for i in range(count)]

def human_activity() -> List[TelemetryEvent]:
    return (
        [simple_event(TelemetryKind.RENDER)]
        + human_keystrokes()
        + human_pointer_moves()
        + human_clicks()
        + human_scrolls()
    )

def make_features(**overrides) -> FeatureSet:
    """Feature set of an ordinary human session, with overrides."""
    values = dict(
        keystroke_count=60, pointer_count=40, click_count=5, scroll_count=5,
        dwell_mean=110.0, flight_mean=175.0, dwell_std=17.0, typing_wpm=43.0,
        velocity_mean=400.0, acceleration_mean=250.0, velocity_std=210.0, angle_change_mean=37.0,
        click_interval_std=560.0, rapid_click_fraction=0.0,
        error_rate=0.07, channel_count=4, paste_count=0, focus_changes=1,
        session_seconds=30.0,
    )
    values.update(overrides)
    return FeatureSet(**values)

HUMAN_PROBES: Dict[str, str] = {
    "canvas": "c3a1f09b77e2d4a8",
    "webgl": "ANGLE (Intel, Intel(R) UHD Graphics 620 Direct3D11 vs_5_0 ps_5_0)",
    "audio": "124.04347527516074",
    "fonts": "Arial,Courier New,Georgia,Helvetica,Times New Roman,Verdana",
    "plugins": "5",
    "platform": "Win32",
    "screen": "1920x1080x24",
    "timezone": "Europe/Berlin",
    "language": "en-US",
    "hardware_concurrency": "8",
    "touch_support": "false",
    "webdriver": "false",
    "automation_markers": "",
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}

HEADLESS_PROBES: Dict[str, str] = {
    **HUMAN_PROBES,
    "canvas": "unavailable",
    "webdriver": "true",
    "automation_markers": "__puppeteer_evaluation_script__",
    "user_agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
    ),
}

# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(token_secret="test-secret-do-not-use")

@pytest.fixture
def orchestrator(config, clock):
    """Orchestrator with in-memory stores, no GeoIP and a fake clock."""
    engine = TrustOrchestrator(
        config,
        clock=clock,
        context_processor=RequestContextProcessor(geoip_path=None),
    )
    yield engine
    engine.close()

# =============================================================================
# Redis Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def redis_client():
    """
    Session-scoped Redis client for backend tests.

    Requires a reachable Redis (REDIS_HOST / REDIS_PORT / REDIS_PASSWORD).
    """
    import redis

    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", "6379"))
    password = os.environ.get("REDIS_PASSWORD")

    try:
        client = redis.Redis(
            host=host,
            port=port,
            password=password,
            decode_responses=True,
            socket_timeout=1.0,
        )
        client.ping()
    except redis.RedisError:
        pytest.skip(f"Redis not available at {host}:{port}")

    yield client
    client.close()

@pytest.fixture
def clean_redis(redis_client):
    """
    Function-scoped fixture that provides a clean Redis state.
    Flushes the database after each test for isolation.
    """
    yield redis_client
    redis_client.flushdb()

# =============================================================================
# GeoIP Fixtures
# =============================================================================

@pytest.fixture
def mock_geoip():
    """
    Fixture that returns a context manager for mocking GeoIP responses.

    Usage:
        def test_example(mock_geoip):
            with mock_geoip({"8.8.8.8": {"city_name": "Mountain View"}}):
                processor = RequestContextProcessor()
    """
    @contextmanager
    def _mock_geoip(ip_responses: Dict[str, dict]):
        def create_mock_response(ip: str):
            if ip not in ip_responses:
                raise Exception(f"IP {ip} not in mock database")

            data = ip_responses[ip]
            mock_response = MagicMock()
            mock_response.city.name = data.get("city_name", "MockCity")
            mock_response.country.iso_code = data.get("country_iso", "US")
            return mock_response

        mock_reader = MagicMock()
        mock_reader.city.side_effect = create_mock_response

        with patch("geoip2.database.Reader") as MockReader:
            MockReader.return_value = mock_reader
            yield mock_reader

    return _mock_geoip
