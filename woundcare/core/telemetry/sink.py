"""
Eligibility Telemetry

Monotonic counters for policy-selection fallbacks and unmatched
diagnoses. The engine only ever writes through the TelemetrySink
protocol; InMemoryTelemetrySink is the default, lock-protected store.
"""
import re
import time
from collections import deque
from threading import Lock
from typing import Any, Callable, Deque, Dict, Optional, Protocol, runtime_checkable

from woundcare import config
from woundcare.utils import get_logger

logger = get_logger(__name__)


DIAGNOSIS_SOURCES = ("primary", "secondary")
DIAGNOSIS_FORMATS = ("text_description", "invalid_format", "icd10_like")

_HOUR = 3600.0
_DAY = 24 * _HOUR
_JURISDICTION_LABEL = re.compile(r"[^A-Z0-9]")


@runtime_checkable
class TelemetrySink(Protocol):
    """Where the engine reports degraded paths."""

    def record_policy_fallback(
        self,
        fallback_type: str,
        fallback_stage_count: int,
        considered_policies: int,
        jurisdiction: Optional[str],
    ) -> None: ...

    def record_unmatched_diagnosis(
        self,
        source: str,
        description_length: int,
        format: str,
    ) -> None: ...


def sanitize_jurisdiction(value: Optional[str]) -> str:
    """Uppercase alphanumerics only, at most 12 characters; otherwise UNKNOWN."""
    if not value:
        return "UNKNOWN"
    label = _JURISDICTION_LABEL.sub("", str(value).upper())[:12]
    return label or "UNKNOWN"


def stage_bucket(stage_count: int) -> str:
    if stage_count <= 0:
        return "stage_0"
    if stage_count == 1:
        return "stage_1"
    if stage_count == 2:
        return "stage_2"
    return "stage_3_plus"


def considered_bucket(considered: int) -> str:
    if considered <= 0:
        return "policies_0"
    if considered <= 2:
        return "policies_1_2"
    if considered <= 5:
        return "policies_3_5"
    return "policies_6_plus"


def description_length_bucket(length: int) -> str:
    if length <= 0:
        return "empty"
    if length <= 10:
        return "short"
    if length <= 30:
        return "medium"
    if length <= 60:
        return "long"
    return "very_long"


def _empty_fallbacks() -> Dict[str, Any]:
    return {
        "total": 0,
        "by_type": {},
        "by_jurisdiction": {},
        "depth_histogram": {b: 0 for b in ("stage_0", "stage_1", "stage_2", "stage_3_plus")},
        "considered_histogram": {
            b: 0 for b in ("policies_0", "policies_1_2", "policies_3_5", "policies_6_plus")
        },
    }


def _empty_diagnoses() -> Dict[str, Any]:
    return {
        "total": 0,
        "by_source": {s: 0 for s in DIAGNOSIS_SOURCES},
        "by_format": {f: 0 for f in DIAGNOSIS_FORMATS},
        "description_length_histogram": {
            b: 0 for b in ("empty", "short", "medium", "long", "very_long")
        },
    }


class InMemoryTelemetrySink:
    """
    Thread-safe in-process telemetry.

    Counters only grow until reset(). Recent event timestamps are kept
    (bounded) to report last-hour and last-24-hour rates.
    """

    def __init__(
        self,
        recent_limit: int = config.TELEMETRY_RECENT_LIMIT,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._lock = Lock()
        self._clock = clock or time.time
        self._recent_limit = recent_limit
        self._fallbacks = _empty_fallbacks()
        self._diagnoses = _empty_diagnoses()
        self._fallback_times: Deque[float] = deque(maxlen=recent_limit)
        self._diagnosis_times: Deque[float] = deque(maxlen=recent_limit)

    def record_policy_fallback(
        self,
        fallback_type: str,
        fallback_stage_count: int,
        considered_policies: int,
        jurisdiction: Optional[str],
    ) -> None:
        label = sanitize_jurisdiction(jurisdiction)
        with self._lock:
            m = self._fallbacks
            m["total"] += 1
            m["by_type"][fallback_type] = m["by_type"].get(fallback_type, 0) + 1
            m["by_jurisdiction"][label] = m["by_jurisdiction"].get(label, 0) + 1
            m["depth_histogram"][stage_bucket(fallback_stage_count)] += 1
            m["considered_histogram"][considered_bucket(considered_policies)] += 1
            self._fallback_times.append(self._clock())
        logger.warning(
            f"Policy selection fallback: type={fallback_type} jurisdiction={label} "
            f"considered={considered_policies}"
        )

    def record_unmatched_diagnosis(
        self,
        source: str,
        description_length: int,
        format: str,
    ) -> None:
        if source not in DIAGNOSIS_SOURCES:
            source = "secondary"
        if format not in DIAGNOSIS_FORMATS:
            format = "invalid_format"
        with self._lock:
            m = self._diagnoses
            m["total"] += 1
            m["by_source"][source] += 1
            m["by_format"][format] += 1
            m["description_length_histogram"][description_length_bucket(description_length)] += 1
            self._diagnosis_times.append(self._clock())

    def _window_counts(self, stamps: Deque[float], now: float) -> Dict[str, int]:
        return {
            "last_hour": sum(1 for t in stamps if now - t <= _HOUR),
            "last_24_hours": sum(1 for t in stamps if now - t <= _DAY),
        }

    def summary(self) -> Dict[str, Any]:
        """Snapshot of all counters plus recent-window rates."""
        now = self._clock()
        with self._lock:
            fallbacks = {
                "total": self._fallbacks["total"],
                "by_type": dict(self._fallbacks["by_type"]),
                "by_jurisdiction": dict(self._fallbacks["by_jurisdiction"]),
                "depth_histogram": dict(self._fallbacks["depth_histogram"]),
                "considered_histogram": dict(self._fallbacks["considered_histogram"]),
                **self._window_counts(self._fallback_times, now),
            }
            diagnoses = {
                "total": self._diagnoses["total"],
                "by_source": dict(self._diagnoses["by_source"]),
                "by_format": dict(self._diagnoses["by_format"]),
                "description_length_histogram": dict(self._diagnoses["description_length_histogram"]),
                **self._window_counts(self._diagnosis_times, now),
            }
        return {"policy_fallbacks": fallbacks, "unmatched_diagnoses": diagnoses}

    def reset(self) -> None:
        with self._lock:
            self._fallbacks = _empty_fallbacks()
            self._diagnoses = _empty_diagnoses()
            self._fallback_times.clear()
            self._diagnosis_times.clear()
