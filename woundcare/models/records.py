"""
Boundary Records

Pydantic models for everything that crosses into the engine: wound
measurements, encounters, episodes and policy-selection requests.
Closed variants (units, diabetic status, jurisdiction codes) are rejected
here so the evaluators never see an unrecognized value.
"""
import re
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; leave aware ones untouched."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _coerce_timestamp(value: Any) -> Any:
    # bare dates become midnight UTC
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(date.fromisoformat(value.strip()), time.min, tzinfo=timezone.utc)
    return value


class MeasurementUnit(str, Enum):
    """Linear units accepted for wound dimensions."""
    MM     = "mm"
    CM     = "cm"
    INCHES = "inches"

    @classmethod
    def parse(cls, value: Any) -> "MeasurementUnit":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "mm": cls.MM, "millimeter": cls.MM, "millimeters": cls.MM,
            "cm": cls.CM, "centimeter": cls.CM, "centimeters": cls.CM,
            "in": cls.INCHES, "inch": cls.INCHES, "inches": cls.INCHES,
        }
        if key not in aliases:
            raise ValueError(f"Unsupported measurement unit: {value!r}")
        return aliases[key]


class ValidationStatus(str, Enum):
    """Clinical sign-off state of a single measurement."""
    VALIDATED = "validated"
    PENDING   = "pending"
    FLAGGED   = "flagged"


class DiabeticStatus(str, Enum):
    """Closed diabetic-status variant used by the coverage gates."""
    DIABETIC    = "diabetic"
    NONDIABETIC = "nondiabetic"
    UNKNOWN     = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "DiabeticStatus":
        """
        Map free-form status strings onto the closed variant.

        Raises:
            ValueError: if the string is not a recognised status
        """
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.DIABETIC if value else cls.NONDIABETIC
        key = re.sub(r"[\s_\-]+", "", str(value).strip().lower())
        if key in _DIABETIC_ALIASES:
            return cls.DIABETIC
        if key in _NONDIABETIC_ALIASES:
            return cls.NONDIABETIC
        if key in _UNKNOWN_ALIASES:
            return cls.UNKNOWN
        raise ValueError(f"Unrecognized diabetic status: {value!r}")


_DIABETIC_ALIASES = {
    "diabetic", "diabetes", "yes", "true", "dm",
    "type1", "type2", "t1dm", "t2dm", "type1diabetes", "type2diabetes",
}
_NONDIABETIC_ALIASES = {"nondiabetic", "notdiabetic", "no", "false", "none"}
_UNKNOWN_ALIASES = {"unknown", "unk", "notrecorded", ""}


# ---- Measurements ----

class MeasurementRecord(BaseModel):
    """One wound measurement as captured at the point of care."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Measurement identifier")
    timestamp: Optional[datetime] = Field(default=None, description="Capture time (naive = UTC)")
    length: Optional[float] = Field(default=None, description="Longest dimension, in `unit`")
    width: Optional[float] = Field(default=None, description="Perpendicular dimension, in `unit`")
    depth: Optional[float] = Field(default=None, description="Deepest point, in `unit`")
    unit: MeasurementUnit = Field(default=MeasurementUnit.CM)
    vertices: Optional[List[Tuple[float, float]]] = Field(
        default=None, description="Wound outline polygon, in `unit`"
    )
    validation_status: Optional[ValidationStatus] = None
    reported_area: Optional[float] = Field(default=None, description="Area as reported (cm²); never trusted")
    recorded_by: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Any:
        return _coerce_timestamp(v)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("unit", mode="before")
    @classmethod
    def _parse_unit(cls, v: Any) -> MeasurementUnit:
        return MeasurementUnit.parse(v)

    @field_validator("validation_status", mode="before")
    @classmethod
    def _parse_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("vertices", mode="before")
    @classmethod
    def _parse_vertices(cls, v: Any) -> Any:
        if v is None:
            return None
        return [(p["x"], p["y"]) if isinstance(p, dict) else p for p in v]


# ---- Encounters & episodes ----

class ProcedureCode(BaseModel):
    """CPT/HCPCS code billed on an encounter."""
    model_config = ConfigDict(extra="ignore")

    code: str
    description: Optional[str] = None


class WoundDimensions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    length: Optional[float] = None
    width: Optional[float] = None
    unit: MeasurementUnit = MeasurementUnit.CM

    @field_validator("unit", mode="before")
    @classmethod
    def _parse_unit(cls, v: Any) -> MeasurementUnit:
        return MeasurementUnit.parse(v)


class WoundDetails(BaseModel):
    """Wound assessment block documented on an encounter."""
    model_config = ConfigDict(extra="ignore")

    measurements: Optional[WoundDimensions] = None
    depth: Optional[float] = Field(default=None, description="Depth, in the measurement unit")
    location: Optional[str] = None


class EncounterRecord(BaseModel):
    """A single clinical visit within a wound episode."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    date: Optional[datetime] = Field(default=None, description="Encounter date (naive = UTC)")
    notes: List[str] = Field(default_factory=list)
    diabetic_status: DiabeticStatus = DiabeticStatus.UNKNOWN
    procedure_codes: List[ProcedureCode] = Field(default_factory=list)
    wound_details: Optional[WoundDetails] = None
    validation_status: Optional[ValidationStatus] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        return _coerce_timestamp(v)

    @field_validator("date")
    @classmethod
    def _date_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("diabetic_status", mode="before")
    @classmethod
    def _parse_diabetic(cls, v: Any) -> DiabeticStatus:
        return DiabeticStatus.parse(v)

    @field_validator("procedure_codes", mode="before")
    @classmethod
    def _parse_codes(cls, v: Any) -> Any:
        if v is None:
            return []
        return [{"code": c} if isinstance(c, str) else c for c in v]


class EpisodeRecord(BaseModel):
    """A wound episode: one wound followed across encounters."""
    model_config = ConfigDict(extra="ignore")

    id: str
    wound_type: str = Field(default="", description="Wound type / description as documented")
    wound_location: Optional[str] = None
    primary_diagnosis: Optional[str] = None
    secondary_diagnoses: List[str] = Field(default_factory=list)
    therapy_start: Optional[datetime] = Field(default=None, description="First CTP application")
    jurisdiction: Optional[str] = None

    @field_validator("therapy_start", mode="before")
    @classmethod
    def _parse_start(cls, v: Any) -> Any:
        return _coerce_timestamp(v)

    @field_validator("therapy_start")
    @classmethod
    def _start_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


# ---- Policy selection ----

_JURISDICTION_PATTERN = re.compile(r"^[A-Z0-9]{1,12}$")


class PatientCharacteristics(BaseModel):
    is_diabetic: bool = False
    has_venous_disease: bool = False


class PolicySelectionRequest(BaseModel):
    """Inputs to policy selection for one episode."""
    model_config = ConfigDict(extra="ignore")

    jurisdiction: str = Field(..., description="MAC jurisdiction code, e.g. 'J' or 'JJ'")
    wound_type: str = Field(..., description="Wound type, e.g. 'DFU' or 'VLU'")
    wound_location: Optional[str] = None
    patient_characteristics: PatientCharacteristics = Field(default_factory=PatientCharacteristics)
    diagnosis_codes: List[str] = Field(default_factory=list)

    @field_validator("jurisdiction")
    @classmethod
    def _check_jurisdiction(cls, v: str) -> str:
        code = v.strip().upper()
        if not _JURISDICTION_PATTERN.match(code):
            raise ValueError(f"Malformed jurisdiction code: {v!r}")
        return code
