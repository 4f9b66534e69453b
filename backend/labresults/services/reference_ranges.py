"""Reference range metadata and observation interpretation.

Range bounds come from the concept dictionary of the remote record API
(hiAbsolute/hiCritical/hiNormal and their low counterparts). Each bound is
optional; a missing bound never matches.

Boundary semantics are exclusive (value > bound, value < bound) and the
checks run most-severe-first, high side before low side:
  OFF_SCALE_HIGH > CRITICALLY_HIGH > HIGH > OFF_SCALE_LOW > CRITICALLY_LOW > LOW
The first matching bound wins; otherwise the value is NORMAL.
"""

from __future__ import annotations

from labresults.schemas.lab_results import (
    ConceptRecord,
    ObservationInterpretation,
    RangeMetadata,
)

# HL7 v3 ObservationInterpretation codes for API consumers
_HL7_CODES: dict[ObservationInterpretation, str] = {
    ObservationInterpretation.NORMAL: "N",
    ObservationInterpretation.HIGH: "H",
    ObservationInterpretation.CRITICALLY_HIGH: "HH",
    ObservationInterpretation.OFF_SCALE_HIGH: ">",
    ObservationInterpretation.LOW: "L",
    ObservationInterpretation.CRITICALLY_LOW: "LL",
    ObservationInterpretation.OFF_SCALE_LOW: "<",
}


def exist(*args) -> bool:
    """Return True if no argument is None."""
    return all(arg is not None for arg in args)


def assess_value(meta: RangeMetadata, value: float) -> ObservationInterpretation:
    """Classify a numeric value against reference-range metadata.

    Args:
        meta: Range bounds for the observation's concept.
        value: Numeric observation value.

    Returns:
        The most severe matching interpretation, NORMAL if no bound matches.
    """
    if exist(meta.hi_absolute) and value > meta.hi_absolute:
        return ObservationInterpretation.OFF_SCALE_HIGH
    if exist(meta.hi_critical) and value > meta.hi_critical:
        return ObservationInterpretation.CRITICALLY_HIGH
    if exist(meta.hi_normal) and value > meta.hi_normal:
        return ObservationInterpretation.HIGH

    if exist(meta.low_absolute) and value < meta.low_absolute:
        return ObservationInterpretation.OFF_SCALE_LOW
    if exist(meta.low_critical) and value < meta.low_critical:
        return ObservationInterpretation.CRITICALLY_LOW
    if exist(meta.low_normal) and value < meta.low_normal:
        return ObservationInterpretation.LOW

    return ObservationInterpretation.NORMAL


def _format_bound(value: float) -> str:
    # 4.0 -> "4", 4.5 -> "4.5"
    return f"{value:g}"


def extract_range_metadata(concept: ConceptRecord) -> RangeMetadata:
    """Build range metadata from a concept record.

    The human-readable ``range`` ("low – high") is only set when both normal
    bounds are present.
    """
    meta = RangeMetadata(
        hi_absolute=concept.hi_absolute,
        hi_critical=concept.hi_critical,
        hi_normal=concept.hi_normal,
        low_absolute=concept.low_absolute,
        low_critical=concept.low_critical,
        low_normal=concept.low_normal,
        units=concept.units,
        datatype=concept.datatype.display,
    )
    if exist(concept.hi_normal, concept.low_normal):
        meta.range = f"{_format_bound(concept.low_normal)} – {_format_bound(concept.hi_normal)}"
    return meta


def extract_meta_information(concepts: list[ConceptRecord]) -> dict[str, RangeMetadata]:
    """Map concept UUID to its range metadata."""
    return {concept.uuid: extract_range_metadata(concept) for concept in concepts}


def to_hl7_code(interpretation: ObservationInterpretation) -> str:
    """Return the HL7 v3 ObservationInterpretation code for an interpretation."""
    return _HL7_CODES[interpretation]
