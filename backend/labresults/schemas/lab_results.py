"""Lab results schemas.

These schemas describe both sides of the engine:
- Inbound records from the remote clinical record API (concept metadata,
  Observation search results parsed into ObservationEntry)
- Outbound structures served to the frontend (panel groups, timeline view,
  load state)

Design principles:
- Observations are parsed once from raw FHIR and then filled in during
  reconstruction; after that they are treated as read-only
- Absent panel members are explicit None slots, never dropped
- JSON output uses the FHIR field spelling for timestamps (effectiveDateTime)
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from labresults.utils.fhir_helpers import (
    extract_concept_uuid,
    extract_member_ids,
    extract_quantity_value,
)

# Concept classes the engine keeps; everything else is "not a lab test"
LAB_CONCEPT_CLASSES = frozenset({"Test", "LabSet"})


class ObservationInterpretation(IntEnum):
    """Severity classification of a numeric result against its ranges."""

    NORMAL = 0

    HIGH = 1
    CRITICALLY_HIGH = 2
    OFF_SCALE_HIGH = 3

    LOW = 4
    CRITICALLY_LOW = 5
    OFF_SCALE_LOW = 6


# =============================================================================
# Concept metadata (remote REST API, v=full)
# =============================================================================


class ConceptClass(BaseModel):
    """Concept class reference (e.g. Test, LabSet, Finding)."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    display: str | None = None


class ConceptDatatype(BaseModel):
    """Concept datatype reference (e.g. Numeric, Coded)."""

    model_config = ConfigDict(extra="ignore")

    display: str | None = None


class ConceptRecord(BaseModel):
    """A concept as returned by GET /ws/rest/v1/concept/{uuid}?v=full."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str
    display: str = ""
    concept_class: ConceptClass = Field(default_factory=ConceptClass, alias="conceptClass")
    hi_absolute: float | None = Field(default=None, alias="hiAbsolute")
    hi_critical: float | None = Field(default=None, alias="hiCritical")
    hi_normal: float | None = Field(default=None, alias="hiNormal")
    low_absolute: float | None = Field(default=None, alias="lowAbsolute")
    low_critical: float | None = Field(default=None, alias="lowCritical")
    low_normal: float | None = Field(default=None, alias="lowNormal")
    units: str | None = None
    datatype: ConceptDatatype = Field(default_factory=ConceptDatatype)

    @property
    def class_name(self) -> str | None:
        """Concept class name, falling back to its display label."""
        return self.concept_class.name or self.concept_class.display

    @property
    def class_display(self) -> str | None:
        """Concept class display label, falling back to its name."""
        return self.concept_class.display or self.concept_class.name

    @property
    def is_lab_concept(self) -> bool:
        """True for Test and LabSet concepts."""
        return self.class_name in LAB_CONCEPT_CLASSES


class RangeMetadata(BaseModel):
    """Reference-range metadata attached to single test observations."""

    model_config = ConfigDict(populate_by_name=True)

    hi_absolute: float | None = Field(default=None, serialization_alias="hiAbsolute")
    hi_critical: float | None = Field(default=None, serialization_alias="hiCritical")
    hi_normal: float | None = Field(default=None, serialization_alias="hiNormal")
    low_absolute: float | None = Field(default=None, serialization_alias="lowAbsolute")
    low_critical: float | None = Field(default=None, serialization_alias="lowCritical")
    low_normal: float | None = Field(default=None, serialization_alias="lowNormal")
    units: str | None = None
    datatype: str | None = None
    range: str | None = Field(default=None, description="Human-readable normal range")


# =============================================================================
# Observations
# =============================================================================


class ObservationEntry(BaseModel):
    """One lab measurement or panel header.

    Created from a raw FHIR Observation by ``from_resource``; reconstruction
    then fills in name, meta, interpretation and members exactly once.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    concept_uuid: str | None = Field(default=None, serialization_alias="conceptClass")
    effective_date_time: str | None = Field(default=None, alias="effectiveDateTime")
    value: float | None = None
    member_ids: list[str | None] | None = Field(default=None, exclude=True)

    name: str | None = None
    meta: RangeMetadata | None = None
    interpretation: ObservationInterpretation | None = None
    interpretation_code: str | None = Field(default=None, serialization_alias="interpretationCode")
    members: list[ObservationEntry | None] | None = None

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> ObservationEntry:
        """Parse a raw FHIR Observation resource.

        The presence of ``hasMember`` (even empty) marks the entry as a panel.
        The valueQuantity wrapper is reduced to its numeric value.
        """
        return cls(
            id=str(resource.get("id", "")),
            concept_uuid=extract_concept_uuid(resource),
            effective_date_time=resource.get("effectiveDateTime"),
            value=extract_quantity_value(resource),
            member_ids=extract_member_ids(resource) if "hasMember" in resource else None,
        )

    @property
    def is_panel(self) -> bool:
        return self.member_ids is not None

    @field_serializer("interpretation")
    def _serialize_interpretation(self, interpretation: ObservationInterpretation | None):
        return interpretation.name if interpretation is not None else None


class PanelGroup(BaseModel):
    """All observations of one panel or standalone test, newest first."""

    entries: list[ObservationEntry]
    type: str | None = Field(default=None, description="Concept class display (Test or LabSet)")
    uuid: str


# Mapping from panel/test display name to its group
PatientAggregate = dict[str, PanelGroup]


class LabResultsResponse(BaseModel):
    """Response body for a patient's reconstructed lab results."""

    patient_id: str
    groups: dict[str, PanelGroup] = Field(default_factory=dict)


# =============================================================================
# Timeline
# =============================================================================


class YearColumn(BaseModel):
    year: str
    size: int


class DayColumn(BaseModel):
    year: str
    day: str = Field(..., description="MM/DD label")
    size: int


class TimelineView(BaseModel):
    """Per-panel projection used by the timeline table.

    ``time_columns`` and every row in ``rows`` are positionally aligned with
    the panel's entries (newest first). A None in a row means that member
    had no value at that timestamp.
    """

    panel_name: str
    panel_uuid: str
    year_columns: list[YearColumn] = Field(default_factory=list)
    day_columns: list[DayColumn] = Field(default_factory=list)
    time_columns: list[str] = Field(default_factory=list)
    sorted_times: list[str] = Field(default_factory=list)
    rows: dict[str, list[ObservationEntry | None]] = Field(default_factory=dict)


# =============================================================================
# Load state
# =============================================================================


class LoadState(BaseModel):
    """Observable state of a background lab results load."""

    status: Literal["loading", "loaded", "error"]
    data: dict[str, PanelGroup] | None = None
    error: str | None = None
    upstream_status: int | None = None
