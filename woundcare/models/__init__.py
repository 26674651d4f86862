"""
Boundary records for the coverage engine.
"""
from .records import (
    MeasurementUnit,
    ValidationStatus,
    DiabeticStatus,
    MeasurementRecord,
    ProcedureCode,
    WoundDimensions,
    WoundDetails,
    EncounterRecord,
    EpisodeRecord,
    PatientCharacteristics,
    PolicySelectionRequest,
)

__all__ = [
    "MeasurementUnit",
    "ValidationStatus",
    "DiabeticStatus",
    "MeasurementRecord",
    "ProcedureCode",
    "WoundDimensions",
    "WoundDetails",
    "EncounterRecord",
    "EpisodeRecord",
    "PatientCharacteristics",
    "PolicySelectionRequest",
]
