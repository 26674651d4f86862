"""
Telemetry Module - Fallback and Unmatched-Diagnosis Counters

Usage:
    from woundcare.core.telemetry import InMemoryTelemetrySink

    sink = InMemoryTelemetrySink()
    selector = PolicySelector(store, telemetry=sink)
    sink.summary()["policy_fallbacks"]["total"]
"""
from .sink import (
    TelemetrySink,
    InMemoryTelemetrySink,
    sanitize_jurisdiction,
    description_length_bucket,
)

__all__ = [
    "TelemetrySink",
    "InMemoryTelemetrySink",
    "sanitize_jurisdiction",
    "description_length_bucket",
]
