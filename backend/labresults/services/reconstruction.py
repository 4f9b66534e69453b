"""Reconstruction of panel/member structure from flat observation pages.

The Observation search returns panels (LabSet) and single tests (Test) as
one flat, newest-first list. Panels only carry ``hasMember`` references to
their results, so the tree has to be rebuilt:

1. Entries whose concept is not a known Test/LabSet are dropped (the remote
   search is not clean; it may return non-lab observations).
2. Every panel gets a fixed-size member slot list, and each declared member
   id is recorded in a resolution table as (panel index, slot index).
3. Only after all panels are registered are single tests placed: into their
   panel slot when some panel declared them, otherwise into their own group.
   This makes the result independent of the order panels and members appear
   in across pages.
4. Groups are keyed by concept display name and sorted newest first.

A declared member that never shows up (outside the fetched pages, deleted)
leaves a None in its slot so positions stay aligned.
"""

import logging
from typing import Any

from labresults.schemas.lab_results import (
    ConceptRecord,
    ObservationEntry,
    PanelGroup,
    PatientAggregate,
)
from labresults.services.reference_ranges import (
    assess_value,
    extract_meta_information,
    to_hl7_code,
)
from labresults.utils.fhir_helpers import parse_effective_datetime

logger = logging.getLogger(__name__)


def _effective_key(entry: ObservationEntry):
    return parse_effective_datetime(entry.effective_date_time)


def sort_newest_first(entries: list[ObservationEntry]) -> list[ObservationEntry]:
    """Sort observations by effectiveDateTime, newest first (stable)."""
    return sorted(entries, key=_effective_key, reverse=True)


def reconstruct_patient_data(
    entries: list[dict[str, Any]],
    concepts: list[ConceptRecord],
) -> PatientAggregate:
    """Build the panel/test grouping for a patient's raw observations.

    Args:
        entries: Raw FHIR Observation resources as returned by the search.
        concepts: Concept records for the referenced concepts. Concepts that
            are not Test or LabSet are ignored.

    Returns:
        Mapping of concept display name to its PanelGroup. Concepts without
        any observation are omitted.
    """
    lab_concepts = {concept.uuid: concept for concept in concepts if concept.is_lab_concept}
    meta_information = extract_meta_information(list(lab_concepts.values()))
    obs_by_concept: dict[str, list[ObservationEntry]] = {uuid: [] for uuid in lab_concepts}

    panels: list[ObservationEntry] = []
    single_entries: list[ObservationEntry] = []
    # member observation id -> (index into panels, slot index in its members)
    member_slots: dict[str, tuple[int, int]] = {}
    dropped = 0

    for resource in entries:
        entry = ObservationEntry.from_resource(resource)
        concept = lab_concepts.get(entry.concept_uuid)
        if concept is None:
            dropped += 1
            continue

        entry.name = concept.display

        if entry.is_panel:
            entry.members = [None] * len(entry.member_ids)
            for slot, member_id in enumerate(entry.member_ids):
                if member_id:
                    member_slots[member_id] = (len(panels), slot)
            panels.append(entry)
            obs_by_concept[concept.uuid].append(entry)
        else:
            entry.meta = meta_information[concept.uuid]
            if entry.value is not None:
                entry.interpretation = assess_value(entry.meta, entry.value)
                entry.interpretation_code = to_hl7_code(entry.interpretation)
            single_entries.append(entry)

    if dropped:
        logger.debug("Skipped %d observations without a lab concept", dropped)

    for entry in single_entries:
        slot = member_slots.get(entry.id)
        if slot is not None:
            panel_index, member_index = slot
            panels[panel_index].members[member_index] = entry
        else:
            obs_by_concept[entry.concept_uuid].append(entry)

    aggregate: PatientAggregate = {}
    for uuid, group in obs_by_concept.items():
        if not group:
            continue
        concept = lab_concepts[uuid]
        aggregate[concept.display] = PanelGroup(
            entries=sort_newest_first(group),
            type=concept.class_display,
            uuid=uuid,
        )
    return aggregate


def freshness_indicator(entries: list[dict[str, Any]]) -> str | None:
    """Id of the newest raw observation, used to validate cached results."""
    return entries[0].get("id") if entries else None
