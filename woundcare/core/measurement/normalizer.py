"""
Measurement Normalizer

Converts raw wound measurements to canonical units and recomputes area
and volume from geometry. Reported areas are compared but never trusted.
NO ML/AI - purely geometric.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError
from scipy import stats

from woundcare.models import MeasurementRecord, MeasurementUnit, ValidationStatus, WoundDetails
from woundcare.utils import get_logger, InputDataError

logger = get_logger(__name__)


# ── Unit conversion ─────────────────────────────────────────────────────
CM_PER_INCH = 2.54
MM_PER_CM = 10.0

# ── Plausibility bounds (cm) ────────────────────────────────────────────
MIN_DIMENSION_CM = 0.1
MAX_DIMENSION_CM = 50.0
MAX_ASPECT_RATIO = 10.0
REPORTED_AREA_TOLERANCE = 0.10     # 10% relative difference

# ── Outlier detection ───────────────────────────────────────────────────
MODIFIED_Z_THRESHOLD = 3.5
MEAN_AD_SCALE = 1.253314           # sqrt(pi/2): mean-AD to sigma for normal data

_STATUS_PRIORITY = {
    ValidationStatus.VALIDATED: 3,
    ValidationStatus.PENDING: 2,
    None: 1,
    ValidationStatus.FLAGGED: 0,
}

MeasurementLike = Union[MeasurementRecord, Dict[str, Any]]


def to_cm(value: Optional[float], unit: MeasurementUnit) -> Optional[float]:
    """Convert a linear value in ``unit`` to centimetres."""
    if value is None:
        return None
    if unit == MeasurementUnit.MM:
        return value / MM_PER_CM
    if unit == MeasurementUnit.INCHES:
        return value * CM_PER_INCH
    return float(value)


def elliptical_area(length_cm: float, width_cm: float) -> float:
    """Area of the ellipse inscribed in the L × W bounding box."""
    return math.pi / 4.0 * length_cm * width_cm


def ellipsoid_volume(length_cm: float, width_cm: float, depth_cm: float) -> float:
    """Half-ellipsoid approximation used for wound cavity volume."""
    return math.pi / 6.0 * length_cm * width_cm * depth_cm


def validation_priority(status: Optional[ValidationStatus]) -> int:
    """Ordering rank: validated > pending > unspecified > flagged."""
    return _STATUS_PRIORITY.get(status, 1)


def modified_z_scores(values: Sequence[float]) -> np.ndarray:
    """
    MAD-based modified z-scores (Iglewicz & Hoaglin).

    Falls back to the scaled mean absolute deviation when more than half
    the values are identical (MAD = 0). All-identical input scores zero.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr
    median = np.median(arr)
    deviations = np.abs(arr - median)
    spread = stats.median_abs_deviation(arr, scale="normal")
    if spread == 0:
        spread = MEAN_AD_SCALE * float(np.mean(deviations))
    if spread == 0:
        return np.zeros_like(arr)
    return (arr - median) / spread


@dataclass
class NormalizedMeasurement:
    """A measurement in canonical units. Recorder identity and notes are dropped."""
    id: str
    timestamp: Optional[datetime]
    length_cm: Optional[float]
    width_cm: Optional[float]
    depth_cm: Optional[float]
    area_cm2: float
    volume_cm3: Optional[float] = None
    area_method: str = "elliptical"
    validation_status: Optional[ValidationStatus] = None
    outline_rejected: bool = False
    issues: List[str] = field(default_factory=list)

    @property
    def depth_mm(self) -> Optional[float]:
        if self.depth_cm is None:
            return None
        return self.depth_cm * MM_PER_CM

    @property
    def priority(self) -> int:
        return validation_priority(self.validation_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "length_cm": None if self.length_cm is None else round(self.length_cm, 3),
            "width_cm": None if self.width_cm is None else round(self.width_cm, 3),
            "depth_cm": None if self.depth_cm is None else round(self.depth_cm, 3),
            "depth_mm": None if self.depth_mm is None else round(self.depth_mm, 2),
            "area_cm2": round(self.area_cm2, 3),
            "volume_cm3": None if self.volume_cm3 is None else round(self.volume_cm3, 3),
            "area_method": self.area_method,
            "validation_status": self.validation_status.value if self.validation_status else None,
            "outline_rejected": self.outline_rejected,
            "issues": self.issues,
        }


@dataclass
class MeasurementHistory:
    """Time-ordered, de-duplicated measurements plus the entries left out."""
    entries: List[NormalizedMeasurement] = field(default_factory=list)
    excluded: List[Dict[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass
class IrregularAreaResult:
    """Polygon area with outline validation."""
    area_cm2: float
    perimeter_cm: float
    is_valid: bool
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "area": round(self.area_cm2, 3),
            "perimeter": round(self.perimeter_cm, 3),
            "validation": {
                "is_valid": self.is_valid,
                "recommendations": self.recommendations,
            },
        }


@dataclass
class ExtractedMeasurements:
    """Encounter wound dimensions in centimetres, with optional correction hints."""
    length: float
    width: float
    area: float
    depth: Optional[float] = None
    unit: str = "cm"
    auto_corrections: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "length": round(self.length, 3),
            "width": round(self.width, 3),
            "area": round(self.area, 3),
            "depth": None if self.depth is None else round(self.depth, 3),
            "unit": self.unit,
            "auto_corrections": self.auto_corrections,
        }


# ── Polygon geometry ────────────────────────────────────────────────────

def _orientation(p: Tuple[float, float], q: Tuple[float, float], r: Tuple[float, float]) -> int:
    val = (q[1] - p[1]) * (r[0] - q[0]) - (q[0] - p[0]) * (r[1] - q[1])
    if abs(val) < 1e-12:
        return 0
    return 1 if val > 0 else 2


def _on_segment(p, q, r) -> bool:
    return (min(p[0], r[0]) <= q[0] <= max(p[0], r[0])
            and min(p[1], r[1]) <= q[1] <= max(p[1], r[1]))


def _segments_intersect(p1, q1, p2, q2) -> bool:
    o1 = _orientation(p1, q1, p2)
    o2 = _orientation(p1, q1, q2)
    o3 = _orientation(p2, q2, p1)
    o4 = _orientation(p2, q2, q1)
    if o1 != o2 and o3 != o4:
        return True
    if o1 == 0 and _on_segment(p1, p2, q1):
        return True
    if o2 == 0 and _on_segment(p1, q2, q1):
        return True
    if o3 == 0 and _on_segment(p2, p1, q2):
        return True
    if o4 == 0 and _on_segment(p2, q1, q2):
        return True
    return False


def _count_self_intersections(points: List[Tuple[float, float]]) -> int:
    n = len(points)
    edges = [(points[i], points[(i + 1) % n]) for i in range(n)]
    count = 0
    for i in range(n):
        for j in range(i + 1, n):
            # adjacent edges share a vertex
            if j == i + 1 or (i == 0 and j == n - 1):
                continue
            if _segments_intersect(edges[i][0], edges[i][1], edges[j][0], edges[j][1]):
                count += 1
    return count


def calculate_irregular_wound_area(
    vertices: Iterable[Any],
    unit: Union[MeasurementUnit, str] = MeasurementUnit.CM,
) -> IrregularAreaResult:
    """
    Shoelace area of a wound outline.

    The absolute value is taken so clockwise and counter-clockwise
    tracings give the same area. Self-intersecting outlines still return
    an area but are marked invalid.
    """
    unit = MeasurementUnit.parse(unit)
    points: List[Tuple[float, float]] = []
    for v in vertices:
        x, y = (v["x"], v["y"]) if isinstance(v, dict) else v
        points.append((to_cm(float(x), unit), to_cm(float(y), unit)))

    if len(points) < 3:
        return IrregularAreaResult(
            area_cm2=0.0,
            perimeter_cm=0.0,
            is_valid=False,
            recommendations=["At least 3 vertices are required to trace a wound outline"],
        )

    xs = np.array([p[0] for p in points])
    ys = np.array([p[1] for p in points])
    area = 0.5 * abs(float(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1))))
    perimeter = float(np.sum(np.hypot(np.roll(xs, -1) - xs, np.roll(ys, -1) - ys)))

    recommendations: List[str] = []
    crossings = _count_self_intersections(points)
    if crossings:
        recommendations.append(
            f"Outline has self-intersections ({crossings} crossing{'' if crossings == 1 else 's'}); "
            f"retrace the wound boundary"
        )
    if area == 0:
        recommendations.append("Outline encloses no area; vertices may be collinear")

    return IrregularAreaResult(
        area_cm2=area,
        perimeter_cm=perimeter,
        is_valid=not recommendations,
        recommendations=recommendations,
    )


# ── Record normalization ────────────────────────────────────────────────

def measurement_id(raw: Any) -> str:
    """Best-effort identifier of a raw measurement, for exclusion reports."""
    if isinstance(raw, dict):
        return str(raw.get("id") or "unknown")
    return str(getattr(raw, "id", None) or "unknown")


def as_measurement_record(measurement: Any) -> MeasurementRecord:
    """
    Validate a raw measurement into a MeasurementRecord.

    Raises:
        InputDataError: if the record is missing required fields or holds
            unparseable values
    """
    if isinstance(measurement, MeasurementRecord):
        return measurement
    try:
        return MeasurementRecord.model_validate(measurement)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "record" for err in exc.errors()})
        raise InputDataError(
            f"Measurement {measurement_id(measurement)} failed validation "
            f"({exc.error_count()} invalid field(s))",
            field_name=",".join(fields),
        ) from exc


def normalize_measurement(measurement: MeasurementLike) -> NormalizedMeasurement:
    """
    Convert one record to canonical units and recompute its area.

    A traced outline is used only when it is a valid simple polygon. An
    invalid outline is rejected and the elliptical L × W area used instead.

    Raises:
        InputDataError: if the record fails validation, or if neither a
            valid outline nor positive length and width are present
    """
    record = as_measurement_record(measurement)
    issues: List[str] = []

    length_cm = to_cm(record.length, record.unit)
    width_cm = to_cm(record.width, record.unit)
    depth_cm = to_cm(record.depth, record.unit)

    area: Optional[float] = None
    method = "elliptical"
    outline_rejected = False

    if record.vertices:
        polygon = calculate_irregular_wound_area(record.vertices, record.unit)
        if polygon.is_valid:
            area = polygon.area_cm2
            method = "polygon"
        else:
            outline_rejected = True
            issues.extend(f"Outline rejected: {r}" for r in polygon.recommendations)

    if area is None:
        if length_cm is None or width_cm is None:
            raise InputDataError(
                f"Measurement {record.id} has no dimensions or valid outline",
                field_name="vertices" if outline_rejected else "length/width",
            )
        if length_cm <= 0 or width_cm <= 0:
            raise InputDataError(
                f"Measurement {record.id} has non-positive dimensions",
                field_name="length/width",
            )
        area = elliptical_area(length_cm, width_cm)

    if record.reported_area is not None and area > 0:
        if abs(record.reported_area - area) / area > REPORTED_AREA_TOLERANCE:
            issues.append("Reported area differs from recomputed area; recomputed value used")

    volume = None
    if depth_cm is not None and depth_cm > 0 and length_cm and width_cm:
        volume = ellipsoid_volume(length_cm, width_cm, depth_cm)

    return NormalizedMeasurement(
        id=record.id,
        timestamp=record.timestamp,
        length_cm=length_cm,
        width_cm=width_cm,
        depth_cm=depth_cm,
        area_cm2=area,
        volume_cm3=volume,
        area_method=method,
        validation_status=record.validation_status,
        outline_rejected=outline_rejected,
        issues=issues,
    )


def order_key(m: NormalizedMeasurement) -> Tuple[datetime, int, str]:
    """Sort key: timestamp, then higher validation priority, then id."""
    return (m.timestamp, -m.priority, m.id)


def build_measurement_history(measurements: Iterable[MeasurementLike]) -> MeasurementHistory:
    """
    Normalize, order and de-duplicate a measurement series.

    Entries with no timestamp or no usable geometry are excluded (and
    reported). For several entries sharing one timestamp only the highest
    priority one is kept.
    """
    history = MeasurementHistory()
    usable: List[NormalizedMeasurement] = []

    for raw in measurements:
        try:
            normalized = normalize_measurement(raw)
        except InputDataError as exc:
            history.excluded.append({"id": measurement_id(raw), "reason": exc.code})
            logger.debug(f"Excluded measurement: {exc.message}")
            continue
        if normalized.timestamp is None:
            history.excluded.append({"id": normalized.id, "reason": "MISSING_TIMESTAMP"})
            continue
        usable.append(normalized)

    usable.sort(key=order_key)
    for m in usable:
        if history.entries and history.entries[-1].timestamp == m.timestamp:
            history.excluded.append({"id": m.id, "reason": "DUPLICATE_TIMESTAMP"})
            continue
        history.entries.append(m)

    return history


# ── Encounter extraction ────────────────────────────────────────────────

def _suggest_corrections(length_cm: float, width_cm: float) -> Optional[Dict[str, Any]]:
    suggestions: List[Dict[str, Any]] = []
    confidence = 1.0

    short, long_ = sorted((length_cm, width_cm))
    if short > 0 and long_ / short > MAX_ASPECT_RATIO:
        ratio = long_ / short
        suggestions.append({
            "field": "length" if length_cm >= width_cm else "width",
            "issue": f"Aspect ratio {ratio:.1f}:1 exceeds {MAX_ASPECT_RATIO:.0f}:1",
            "suggestion": "Verify length and width were recorded in the same unit",
        })
        confidence = min(confidence, max(0.1, MAX_ASPECT_RATIO / ratio))

    for name, value in (("length", length_cm), ("width", width_cm)):
        if value > MAX_DIMENSION_CM:
            suggestions.append({
                "field": name,
                "issue": f"{name.capitalize()} {value:.1f} cm exceeds {MAX_DIMENSION_CM:.0f} cm",
                "suggestion": "Value may have been recorded in millimetres",
                "suggested_value": round(value / MM_PER_CM, 3),
            })
            confidence = min(confidence, 0.4)
        elif value < MIN_DIMENSION_CM:
            suggestions.append({
                "field": name,
                "issue": f"{name.capitalize()} {value:.2f} cm is below {MIN_DIMENSION_CM} cm",
                "suggestion": "Value may have been recorded in centimetres as millimetres",
                "suggested_value": round(value * MM_PER_CM, 3),
            })
            confidence = min(confidence, 0.4)

    if not suggestions:
        return None
    return {
        "suggestions": suggestions,
        "confidence": round(min(confidence, 0.45), 2),
        "reason": "Dimensions outside expected clinical range; original values retained",
    }


def extract_wound_measurements(
    wound_details: Union[WoundDetails, Dict[str, Any], None],
    auto_correct: bool = False,
) -> Optional[ExtractedMeasurements]:
    """
    Pull length/width/depth from an encounter wound block, in cm.

    Returns None when no length and width are documented. With
    ``auto_correct`` the result may carry correction suggestions; the
    measured values themselves are never changed.
    """
    if wound_details is None:
        return None
    if not isinstance(wound_details, WoundDetails):
        wound_details = WoundDetails.model_validate(wound_details)

    dims = wound_details.measurements
    if dims is None or dims.length is None or dims.width is None:
        return None

    length_cm = to_cm(dims.length, dims.unit)
    width_cm = to_cm(dims.width, dims.unit)
    depth_cm = to_cm(wound_details.depth, dims.unit)

    return ExtractedMeasurements(
        length=length_cm,
        width=width_cm,
        area=elliptical_area(length_cm, width_cm),
        depth=depth_cm,
        auto_corrections=_suggest_corrections(length_cm, width_cm) if auto_correct else None,
    )


# ── Area anomaly detection ──────────────────────────────────────────────

def _area_of(measurement: Any) -> Optional[float]:
    if isinstance(measurement, NormalizedMeasurement):
        return measurement.area_cm2
    if isinstance(measurement, dict) and measurement.get("area") is not None:
        return float(measurement["area"])
    try:
        return normalize_measurement(measurement).area_cm2
    except InputDataError:
        return None


def detect_measurement_anomalies(measurements: Sequence[Any]) -> List[Dict[str, Any]]:
    """
    Flag area outliers by modified z-score (|z| > 3.5).

    Accepts normalized measurements, records, or dicts carrying ``area``.
    Entries without an area are reported with ``is_outlier`` False.
    """
    areas = [_area_of(m) for m in measurements]
    valid_idx = [i for i, a in enumerate(areas) if a is not None]
    scores = modified_z_scores([areas[i] for i in valid_idx]) if len(valid_idx) >= 3 else None

    results = []
    for i, m in enumerate(measurements):
        mid = m.id if hasattr(m, "id") else str(m.get("id", i))
        z = 0.0
        if scores is not None and i in valid_idx:
            z = float(scores[valid_idx.index(i)])
        results.append({
            "id": mid,
            "area": areas[i],
            "modified_z_score": round(z, 3),
            "validation_flags": {"is_outlier": abs(z) > MODIFIED_Z_THRESHOLD},
        })

    outliers = sum(1 for r in results if r["validation_flags"]["is_outlier"])
    if outliers:
        logger.info(f"Area anomaly scan: {outliers}/{len(results)} outliers")
    return results
