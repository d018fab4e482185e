"""
Trust Engine Processors

Telemetry collection, statistical extraction, environment fingerprinting
and request context enrichment.
"""

from trustcore.processors.context import RequestContextProcessor
from trustcore.processors.features import FeatureSet, StatisticalSignalExtractor
from trustcore.processors.fingerprint import (
    EnvironmentProbe,
    Fingerprint,
    FingerprintBuilder,
    StaticProbe,
)
from trustcore.processors.telemetry import TelemetryCollector, TelemetrySession

__all__ = [
    "RequestContextProcessor",
    "FeatureSet",
    "StatisticalSignalExtractor",
    "EnvironmentProbe",
    "Fingerprint",
    "FingerprintBuilder",
    "StaticProbe",
    "TelemetryCollector",
    "TelemetrySession",
]
