"""
Unit Tests for Eligibility Telemetry

Tests for counters, histograms, recent-window rates and thread safety.
"""
import threading

from woundcare.core.telemetry import (
    InMemoryTelemetrySink,
    TelemetrySink,
    description_length_bucket,
    sanitize_jurisdiction,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestHelpers:
    """Tests for label sanitizing and bucketing."""

    def test_sanitize_jurisdiction(self):
        assert sanitize_jurisdiction("j-1") == "J1"
        assert sanitize_jurisdiction(None) == "UNKNOWN"
        assert sanitize_jurisdiction("!!!") == "UNKNOWN"
        assert sanitize_jurisdiction("abcdefghijklmnop") == "ABCDEFGHIJKL"

    def test_description_length_bucket(self):
        assert description_length_bucket(0) == "empty"
        assert description_length_bucket(10) == "short"
        assert description_length_bucket(30) == "medium"
        assert description_length_bucket(60) == "long"
        assert description_length_bucket(61) == "very_long"


class TestInMemoryTelemetrySink:
    """Tests for InMemoryTelemetrySink."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryTelemetrySink(), TelemetrySink)

    def test_policy_fallback_counters(self):
        """Fallbacks are counted by type, jurisdiction, stage and candidate count."""
        sink = InMemoryTelemetrySink()
        sink.record_policy_fallback("nearest_future", 1, 3, "j")
        sink.record_policy_fallback("no_policies_available", 0, 0, None)

        summary = sink.summary()["policy_fallbacks"]
        assert summary["total"] == 2
        assert summary["by_type"] == {"nearest_future": 1, "no_policies_available": 1}
        assert summary["by_jurisdiction"] == {"J": 1, "UNKNOWN": 1}
        assert summary["depth_histogram"]["stage_1"] == 1
        assert summary["depth_histogram"]["stage_0"] == 1
        assert summary["considered_histogram"]["policies_3_5"] == 1
        assert summary["considered_histogram"]["policies_0"] == 1

    def test_unknown_labels_are_bucketed(self):
        """Unexpected source/format labels fall into the catch-all buckets."""
        sink = InMemoryTelemetrySink()
        sink.record_unmatched_diagnosis("tertiary", 5, "weird")

        summary = sink.summary()["unmatched_diagnoses"]
        assert summary["by_source"]["secondary"] == 1
        assert summary["by_format"]["invalid_format"] == 1

    def test_recent_windows(self):
        """Last-hour and last-day rates follow the injected clock."""
        clock = FakeClock()
        sink = InMemoryTelemetrySink(clock=clock)
        sink.record_unmatched_diagnosis("primary", 12, "text_description")
        clock.now += 2 * 3600
        sink.record_unmatched_diagnosis("primary", 12, "text_description")

        summary = sink.summary()["unmatched_diagnoses"]
        assert summary["last_hour"] == 1
        assert summary["last_24_hours"] == 2

        clock.now += 25 * 3600
        summary = sink.summary()["unmatched_diagnoses"]
        assert summary["last_24_hours"] == 0
        assert summary["total"] == 2

    def test_recent_limit_bounds_window(self):
        """Only the most recent events are kept for rates; totals keep counting."""
        sink = InMemoryTelemetrySink(recent_limit=5, clock=FakeClock())
        for _ in range(12):
            sink.record_policy_fallback("nearest_future", 1, 1, "J")

        summary = sink.summary()["policy_fallbacks"]
        assert summary["total"] == 12
        assert summary["last_hour"] == 5

    def test_summary_is_snapshot(self):
        """Mutating a summary does not touch the sink."""
        sink = InMemoryTelemetrySink()
        sink.record_policy_fallback("nearest_future", 1, 1, "J")
        summary = sink.summary()
        summary["policy_fallbacks"]["by_type"]["nearest_future"] = 99

        assert sink.summary()["policy_fallbacks"]["by_type"]["nearest_future"] == 1

    def test_reset(self):
        sink = InMemoryTelemetrySink()
        sink.record_policy_fallback("nearest_future", 1, 1, "J")
        sink.record_unmatched_diagnosis("primary", 3, "icd10_like")
        sink.reset()

        summary = sink.summary()
        assert summary["policy_fallbacks"]["total"] == 0
        assert summary["unmatched_diagnoses"]["total"] == 0
        assert summary["policy_fallbacks"]["last_24_hours"] == 0

    def test_concurrent_recording(self):
        """Concurrent writers never lose increments."""
        sink = InMemoryTelemetrySink()
        per_thread = 250

        def worker():
            for _ in range(per_thread):
                sink.record_policy_fallback("most_recent_proposed", 2, 4, "J")
                sink.record_unmatched_diagnosis("secondary", 40, "text_description")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        summary = sink.summary()
        assert summary["policy_fallbacks"]["total"] == 8 * per_thread
        assert summary["policy_fallbacks"]["by_jurisdiction"]["J"] == 8 * per_thread
        assert summary["unmatched_diagnoses"]["by_format"]["text_description"] == 8 * per_thread
