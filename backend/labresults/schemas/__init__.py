"""Pydantic schemas."""

from labresults.schemas.lab_results import (
    LAB_CONCEPT_CLASSES,
    ConceptRecord,
    DayColumn,
    LabResultsResponse,
    LoadState,
    ObservationEntry,
    ObservationInterpretation,
    PanelGroup,
    PatientAggregate,
    RangeMetadata,
    TimelineView,
    YearColumn,
)

__all__ = [
    "LAB_CONCEPT_CLASSES",
    "ConceptRecord",
    "DayColumn",
    "LabResultsResponse",
    "LoadState",
    "ObservationEntry",
    "ObservationInterpretation",
    "PanelGroup",
    "PatientAggregate",
    "RangeMetadata",
    "TimelineView",
    "YearColumn",
]
