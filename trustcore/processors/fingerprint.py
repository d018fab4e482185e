"""
Environment Fingerprint Builder

Canonicalizes environment probe strings (render engine, audio, fonts,
hardware, screen, automation indicators) into a stable opaque id used to
bind sessions and tokens. The id is never an authentication factor.

Probes that are missing are recorded as "unavailable" and probes that
raise are recorded as "error". Absence is itself a signal: a missing
render capability raises bot likelihood instead of being ignored.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from user_agents import parse as parse_user_agent

from trustcore.schemas.outputs import Signal


logger = logging.getLogger(__name__)


# =============================================================================
# Probe Names & Sentinels
# =============================================================================

UNAVAILABLE = "unavailable"
ERROR = "error"
TIMEOUT = "timeout"
MISSING_VALUES = frozenset({UNAVAILABLE, ERROR, TIMEOUT})

CANONICAL_PROBES = (
    "canvas",
    "webgl",
    "audio",
    "fonts",
    "plugins",
    "platform",
    "screen",
    "timezone",
    "language",
    "hardware_concurrency",
    "touch_support",
    "webdriver",
    "automation_markers",
    "user_agent",
)

# Subset hashed into the fingerprint id
HASHED_PROBES = ("canvas", "webgl", "audio", "fonts", "platform", "screen")

# Probes that must not change for a bound session
BINDING_PROBES = ("canvas", "webgl", "timezone", "screen")

KNOWN_AUTOMATION_MARKERS = frozenset({
    "__webdriver_evaluate",
    "__selenium_evaluate",
    "__webdriver_script_function",
    "__fxdriver_evaluate",
    "__driver_unwrapped",
    "__webdriver_unwrapped",
    "__selenium_unwrapped",
    "_Selenium_IDE_Recorder",
    "calledSelenium",
    "callPhantom",
    "_phantom",
    "__nightmare",
    "__puppeteer_evaluation_script__",
    "domAutomation",
    "domAutomationController",
})

HEADLESS_UA_MARKERS = ("headlesschrome", "phantomjs", "puppeteer", "playwright")

SUSPICIOUS_SCREENS = frozenset({"0x0", "800x600"})
MOBILE_PLATFORM_MARKERS = ("android", "iphone", "ipad", "mobile")
MIN_FONTS = 3
MAX_HARDWARE_CONCURRENCY = 128

DRIFT_PENALTY = 20


# =============================================================================
# Probe Capability
# =============================================================================

class EnvironmentProbe(Protocol):
    """A source of one opaque environment string."""

    name: str

    def collect(self) -> str:
        ...


@dataclass(frozen=True)
class StaticProbe:
    """Probe whose value is already known (e.g. a request header)."""
    name: str
    value: str

    def collect(self) -> str:
        return self.value


class Fingerprint(BaseModel):
    """Immutable environment snapshot."""
    model_config = ConfigDict(frozen=True)

    id: str
    raw_probes: Dict[str, str]
    captured_at: float


# =============================================================================
# Probe Value Parsing
# =============================================================================

def _available(value: str) -> bool:
    return value not in MISSING_VALUES


def _truthy(value: str) -> bool:
    value = value.strip().lower()
    if value in ("true", "yes"):
        return True
    return value.isdigit() and int(value) > 0


def _list(value: str) -> List[str]:
    if not _available(value):
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _screen(value: str) -> str:
    parts = value.lower().split("x")
    return "x".join(parts[:2])


def _has_automation_markers(p: Mapping[str, str]) -> bool:
    markers = _list(p["automation_markers"])
    return any(m.lower() not in ("none", "false", "0") for m in markers)


def _headless_user_agent(p: Mapping[str, str]) -> bool:
    ua_string = p["user_agent"]
    if not _available(ua_string):
        return False
    lowered = ua_string.lower()
    if any(marker in lowered for marker in HEADLESS_UA_MARKERS):
        return True
    return parse_user_agent(ua_string).is_bot


def _no_plugins(p: Mapping[str, str]) -> bool:
    count = _int(p["plugins"])
    if count is None:
        count = len(_list(p["plugins"])) if _available(p["plugins"]) else None
    return count == 0 and not _truthy(p["touch_support"])


def _suspicious_concurrency(p: Mapping[str, str]) -> bool:
    cores = _int(p["hardware_concurrency"])
    return cores is not None and (cores == 0 or cores > MAX_HARDWARE_CONCURRENCY)


def _mobile_without_touch(p: Mapping[str, str]) -> bool:
    platform = p["platform"].lower()
    is_mobile = any(marker in platform for marker in MOBILE_PLATFORM_MARKERS)
    return is_mobile and not _truthy(p["touch_support"])


def _few_fonts(p: Mapping[str, str]) -> bool:
    return _available(p["fonts"]) and len(_list(p["fonts"])) < MIN_FONTS


# =============================================================================
# Environment Checks
# =============================================================================

@dataclass(frozen=True)
class EnvironmentCheck:
    """Binary environment check mapped to fixed penalty points."""
    name: str
    penalty: int
    detail: str
    predicate: Callable[[Mapping[str, str]], bool]


ENVIRONMENT_CHECKS = (
    EnvironmentCheck("webdriver_present", 40, "navigator.webdriver is set",
                     lambda p: _truthy(p["webdriver"])),
    EnvironmentCheck("automation_markers", 35, "Automation framework markers present",
                     _has_automation_markers),
    EnvironmentCheck("headless_user_agent", 35, "Headless or bot user agent",
                     _headless_user_agent),
    EnvironmentCheck("canvas_unavailable", 15, "Canvas rendering unavailable",
                     lambda p: not _available(p["canvas"])),
    EnvironmentCheck("webgl_unavailable", 10, "WebGL unavailable",
                     lambda p: not _available(p["webgl"])),
    EnvironmentCheck("audio_unavailable", 10, "Audio processing unavailable",
                     lambda p: not _available(p["audio"])),
    EnvironmentCheck("no_plugins", 15, "No plugins on a non-touch device",
                     _no_plugins),
    EnvironmentCheck("suspicious_screen", 10, "Default headless screen size",
                     lambda p: _screen(p["screen"]) in SUSPICIOUS_SCREENS),
    EnvironmentCheck("suspicious_hardware_concurrency", 10, "Implausible CPU core count",
                     _suspicious_concurrency),
    EnvironmentCheck("mobile_without_touch", 15, "Mobile platform without touch support",
                     _mobile_without_touch),
    EnvironmentCheck("few_fonts", 10, "Fewer than 3 fonts detected",
                     _few_fonts),
)


# =============================================================================
# Builder
# =============================================================================

class FingerprintBuilder:
    """Builds and assesses environment fingerprints."""

    def collect(self, probes: Iterable[EnvironmentProbe]) -> Dict[str, str]:
        """Run probe capabilities, substituting sentinels on failure."""
        values: Dict[str, str] = {}
        for probe in probes:
            try:
                value = probe.collect()
            except Exception as e:
                logger.debug(f"Probe {probe.name} failed: {e}")
                value = ERROR
            values[probe.name] = value
        return values

    def build(self, probes: Mapping[str, Optional[str]], now: Optional[float] = None) -> Fingerprint:
        """
        Canonicalize probe values into a Fingerprint.

        Every canonical probe is present in ``raw_probes``; missing or
        empty values become "unavailable". Non-canonical probes are kept
        but do not affect the id.
        """
        raw: Dict[str, str] = {}
        for name in CANONICAL_PROBES:
            raw[name] = self._normalize(probes.get(name))
        for name, value in probes.items():
            if name not in raw:
                raw[name] = self._normalize(value)

        canonical = json.dumps(
            {name: raw[name] for name in HASHED_PROBES},
            sort_keys=True,
            separators=(",", ":"),
        )
        fingerprint_id = hashlib.sha256(canonical.encode("utf-8")).hexdigest()

        return Fingerprint(
            id=fingerprint_id,
            raw_probes=raw,
            captured_at=time.time() if now is None else now,
        )

    def assess(self, fingerprint: Fingerprint) -> List[Signal]:
        """Environment penalty signals for a fingerprint."""
        probes = fingerprint.raw_probes
        signals: List[Signal] = []
        for check in ENVIRONMENT_CHECKS:
            try:
                hit = check.predicate(probes)
            except Exception as e:
                logger.debug(f"Environment check {check.name} skipped: {e}")
                continue
            if hit:
                signals.append(Signal(name=check.name, score=check.penalty, detail=check.detail))
        return signals

    @staticmethod
    def critical_drift(stored: Fingerprint, current: Fingerprint) -> List[str]:
        """Binding-critical probes whose value changed."""
        return [
            name for name in BINDING_PROBES
            if stored.raw_probes.get(name) != current.raw_probes.get(name)
        ]

    def drift_signal(self, stored: Fingerprint, current: Fingerprint) -> Optional[Signal]:
        changed = self.critical_drift(stored, current)
        if not changed:
            return None
        return Signal(
            name="environment_drift",
            score=DRIFT_PENALTY,
            detail=f"Changed within session: {', '.join(changed)}",
        )

    @staticmethod
    def _normalize(value: Optional[str]) -> str:
        if value is None:
            return UNAVAILABLE
        value = str(value).strip()
        return value if value else UNAVAILABLE
