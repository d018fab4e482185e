"""
Injection Detector

Pattern-table scan of user-supplied values for SQL, NoSQL operator and
code/command injection, plus a per-identifier attempt tracker.

Scoring:
- every pattern that matches a string counts once
- severity by match count: > 5 critical, > 3 high, > 1 medium, else low
- a dangerous query operator used as an object key is always critical
- a finding is blocked unless its severity is low

Nested values (dicts and lists) are walked depth first; the first blocked
finding wins, otherwise the strongest unblocked one is reported.

Tracker:
- attempts counted per identifier in a 1 hour window
- the 3rd attempt inside one window blocks the identifier until the
  window ends
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Pattern, Tuple

from persistence.keyed_store import KeyedStore
from trustcore.schemas.outputs import InjectionKind, InjectionReport, Severity


logger = logging.getLogger(__name__)


ATTEMPT_WINDOW = 60 * 60
ATTEMPT_BLOCK_COUNT = 3

# Longest string scanned; the rest is ignored
MAX_SCAN_LENGTH = 10_000

# Nesting below this depth is not walked
MAX_DEPTH = 32


@dataclass(frozen=True)
class InjectionPattern:
    """One detection rule."""
    name: str
    kind: InjectionKind
    regex: Pattern[str]


def _rules(kind: InjectionKind, *entries: Tuple[str, str]) -> Tuple[InjectionPattern, ...]:
    return tuple(
        InjectionPattern(name, kind, re.compile(pattern, re.IGNORECASE))
        for name, pattern in entries
    )


SQL_PATTERNS = _rules(
    InjectionKind.SQL,
    ("sql_keyword", r"\b(select|insert|update|delete|drop|create|alter|exec|execute)\b"),
    ("sql_union_select", r"union\s+(all\s+)?select"),
    ("sql_tautology", r"\b(or|and)\s+1\s*=\s*1\b"),
    ("sql_quote_boolean", r"'\s*(or|and)\s*'"),
    ("sql_comment", r"--|/\*|\*/"),
    ("sql_xp_cmdshell", r"\bxp_cmdshell\b"),
    ("sql_string_function", r"\b(concat|char|cast|convert)\s*\("),
    ("sql_drop_table", r";\s*drop\s+table"),
    ("sql_time_delay", r"waitfor\s+delay|\b(benchmark|sleep)\s*\("),
)

NOSQL_PATTERNS = _rules(
    InjectionKind.NOSQL,
    ("nosql_operator", r"\$(where|function|accumulator|regex|expr)\b"),
    ("nosql_function", r"\bfunction\s*\("),
    ("nosql_arrow_function", r"=\s*>"),
    ("nosql_this_access", r"\bthis\.\w+"),
    ("nosql_return", r"\breturn\s+"),
    ("nosql_object_operator", r"[{\[]\s*\$"),
    ("null_byte", r"%00|\\x00|\\u0000|\x00"),
)

CODE_PATTERNS = _rules(
    InjectionKind.CODE,
    ("script_tag", r"<script"),
    ("javascript_uri", r"javascript:"),
    ("event_handler", r"\bon(error|load)\s*="),
    ("eval_call", r"\beval\s*\("),
    ("timer_call", r"\bset(timeout|interval)\s*\("),
    ("shell_metacharacter", r";|\||&&|`|\$\("),
    ("path_traversal", r"\.\./|\.\.\\"),
    ("encoded_traversal", r"%2e%2e|%252e"),
)

INJECTION_PATTERNS = SQL_PATTERNS + NOSQL_PATTERNS + CODE_PATTERNS

# Query operators that execute code or read system variables
DANGEROUS_OPERATORS = frozenset({"$where", "$function", "$accumulator", "$expr"})

# Nested quantifiers in a user-supplied $regex
REDOS_PATTERN = re.compile(r"(.*\+.*\+)|(.*\*.*\*)|(\(.*\+.*\).*\+)")

_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def severity_for_matches(count: int) -> Severity:
    if count > 5:
        return Severity.CRITICAL
    if count > 3:
        return Severity.HIGH
    if count > 1:
        return Severity.MEDIUM
    return Severity.LOW


# =============================================================================
# Detector
# =============================================================================

class InjectionDetector:
    """Scans strings and nested request data against the pattern table."""

    def __init__(self, patterns: Tuple[InjectionPattern, ...] = INJECTION_PATTERNS) -> None:
        self.patterns = patterns

    def scan(self, text: str, path: str = "") -> InjectionReport:
        """Scan a single string."""
        sample = text[:MAX_SCAN_LENGTH]
        matched = [p for p in self.patterns if p.regex.search(sample)]
        if not matched:
            return InjectionReport(detected=False, path=path)

        kinds = {p.kind for p in matched}
        if InjectionKind.NOSQL in kinds:
            kind = InjectionKind.NOSQL
        elif InjectionKind.CODE in kinds:
            kind = InjectionKind.CODE
        else:
            kind = InjectionKind.SQL

        severity = severity_for_matches(len(matched))
        return InjectionReport(
            detected=True,
            severity=severity,
            kind=kind,
            patterns=[p.name for p in matched],
            path=path,
            blocked=severity != Severity.LOW,
        )

    def inspect(self, value: Any, path: str = "") -> InjectionReport:
        """
        Walk a JSON-like value.

        Returns the first blocked finding, else the most severe detected
        one, else a clean report.
        """
        strongest = InjectionReport(detected=False, path=path)
        for report in self._walk(value, path, 0):
            if report.blocked:
                return report
            if not strongest.detected or (
                _SEVERITY_RANK[report.severity] > _SEVERITY_RANK[strongest.severity]
            ):
                strongest = report
        return strongest

    def _walk(self, value: Any, path: str, depth: int) -> Iterator[InjectionReport]:
        if depth > MAX_DEPTH:
            return
        if isinstance(value, str):
            report = self.scan(value, path)
            if report.detected:
                yield report
        elif isinstance(value, dict):
            for key, item in value.items():
                child = f"{path}.{key}" if path else str(key)
                operator = self._operator_report(str(key), item, child)
                if operator is not None:
                    yield operator
                yield from self._walk(item, child, depth + 1)
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                yield from self._walk(item, f"{path}[{index}]", depth + 1)

    @staticmethod
    def _operator_report(key: str, item: Any, path: str) -> Optional[InjectionReport]:
        if key in DANGEROUS_OPERATORS or key.startswith("$$"):
            name = f"dangerous_operator:{key}"
        elif key == "$regex" and isinstance(item, str) and REDOS_PATTERN.search(item[:MAX_SCAN_LENGTH]):
            name = "redos_regex"
        else:
            return None
        return InjectionReport(
            detected=True,
            severity=Severity.CRITICAL,
            kind=InjectionKind.OPERATOR,
            patterns=[name],
            path=path,
            blocked=True,
        )


# =============================================================================
# Attempt Tracker
# =============================================================================

@dataclass
class InjectionAttemptRecord:
    count: int = 0
    window_reset_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.window_reset_at


class InjectionAttemptTracker:
    """Counts injection attempts per identifier over a fixed window."""

    def __init__(
        self,
        store: Optional[KeyedStore[InjectionAttemptRecord]] = None,
        block_count: int = ATTEMPT_BLOCK_COUNT,
        window_seconds: float = ATTEMPT_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if block_count < 1:
            raise ValueError("Injection block count must be at least 1")
        self.store: KeyedStore[InjectionAttemptRecord] = store or KeyedStore("injection")
        self.block_count = block_count
        self.window_seconds = window_seconds
        self.clock = clock

    def record(self, identifier: str) -> int:
        """Count one attempt; returns the count inside the current window."""
        now = self.clock()
        with self.store.locked(identifier):
            record = self.store.get(identifier)
            if record is None or record.is_expired(now):
                record = InjectionAttemptRecord(window_reset_at=now + self.window_seconds)
            record.count += 1
            self.store.set(identifier, record)
            if record.count == self.block_count:
                logger.warning(
                    f"Identifier {identifier} blocked after {record.count} injection attempts"
                )
            return record.count

    def attempts(self, identifier: str) -> int:
        now = self.clock()
        with self.store.locked(identifier):
            record = self.store.get(identifier)
            if record is None:
                return 0
            if record.is_expired(now):
                self.store.pop(identifier)
                return 0
            return record.count

    def is_blocked(self, identifier: str) -> bool:
        return self.attempts(identifier) >= self.block_count

    def sweep(self) -> int:
        now = self.clock()
        return self.store.sweep(lambda record: record.is_expired(now))

    def close(self) -> None:
        self.store.close()

