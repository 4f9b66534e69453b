"""Tests for concept metadata resolution and memoization."""

import asyncio

import pytest

from labresults.schemas.lab_results import ConceptRecord
from labresults.services.concepts import ConceptResolver, present_concept_uuids
from labresults.services.openmrs_client import OpenMRSAPIError
from tests.factories import make_concept, make_observation


@pytest.fixture
def resolver(openmrs_client) -> ConceptResolver:
    return ConceptResolver(openmrs_client)


@pytest.fixture
def entries() -> list[dict]:
    return [
        make_observation("o1", "c-cbc", members=["o2"]),
        make_observation("o2", "c-hgb", value=13.0),
        make_observation("o3", "c-hgb", value=12.5),
        make_observation("o4", "c-note"),
    ]


class TestPresentConceptUuids:
    def test_distinct_in_first_seen_order(self, entries):
        assert present_concept_uuids(entries) == ["c-cbc", "c-hgb", "c-note"]

    def test_skips_entries_without_code(self):
        assert present_concept_uuids([{"id": "x", "code": {}}]) == []


class TestConceptResolver:
    @pytest.mark.asyncio
    async def test_fetches_each_concept_once(self, fake_openmrs, resolver, entries):
        fake_openmrs.add_concepts(
            make_concept("c-cbc", "CBC", "LabSet"),
            make_concept("c-hgb", "Hemoglobin"),
            make_concept("c-note", "Clinical note", "Misc"),
        )

        concepts = await resolver.load_present_concepts(entries)

        assert [c.uuid for c in concepts] == ["c-cbc", "c-hgb", "c-note"]
        assert len(fake_openmrs.concept_requests()) == 3
        assert fake_openmrs.concept_requests()[0].url.params["v"] == "full"

    @pytest.mark.asyncio
    async def test_memoized_across_loads(self, fake_openmrs, resolver, entries):
        fake_openmrs.add_concepts(
            make_concept("c-cbc", "CBC", "LabSet"),
            make_concept("c-hgb", "Hemoglobin"),
            make_concept("c-note", "Clinical note", "Misc"),
        )

        await resolver.load_present_concepts(entries)
        again = await resolver.load_present_concepts(entries)

        assert len(again) == 3
        assert len(fake_openmrs.concept_requests()) == 3
        assert len(resolver) == 3

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_in_flight_requests(self, fake_openmrs, resolver, entries):
        fake_openmrs.add_concepts(
            make_concept("c-cbc", "CBC", "LabSet"),
            make_concept("c-hgb", "Hemoglobin"),
            make_concept("c-note", "Clinical note", "Misc"),
        )

        first, second = await asyncio.gather(
            resolver.load_present_concepts(entries),
            resolver.load_present_concepts(entries),
        )

        assert [c.uuid for c in first] == [c.uuid for c in second]
        assert len(fake_openmrs.concept_requests()) == 3

    @pytest.mark.asyncio
    async def test_lab_concepts_filter(self, fake_openmrs, resolver, entries):
        fake_openmrs.add_concepts(
            make_concept("c-cbc", "CBC", "LabSet"),
            make_concept("c-hgb", "Hemoglobin"),
            make_concept("c-note", "Clinical note", "Misc"),
        )

        concepts = await resolver.load_lab_concepts(entries)

        assert {c.uuid for c in concepts} == {"c-cbc", "c-hgb"}

    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_not_memoized(self, fake_openmrs, resolver, entries):
        fake_openmrs.add_concepts(
            make_concept("c-cbc", "CBC", "LabSet"),
            make_concept("c-hgb", "Hemoglobin"),
            make_concept("c-note", "Clinical note", "Misc"),
        )
        fake_openmrs.failing_concepts = {"c-hgb"}

        with pytest.raises(OpenMRSAPIError) as exc_info:
            await resolver.load_present_concepts(entries)
        assert exc_info.value.status_code == 503

        fake_openmrs.failing_concepts = set()
        concepts = await resolver.load_present_concepts(entries)

        assert {c.uuid for c in concepts} == {"c-cbc", "c-hgb", "c-note"}
        hgb_requests = [r for r in fake_openmrs.concept_requests() if r.url.path.endswith("/c-hgb")]
        assert len(hgb_requests) == 2


class TestConceptRecord:
    def test_class_fields_fall_back_to_each_other(self):
        concept = ConceptRecord.model_validate(
            {"uuid": "c-1", "display": "CBC", "conceptClass": {"display": "LabSet"}}
        )
        assert concept.class_name == "LabSet"
        assert concept.class_display == "LabSet"
        assert concept.is_lab_concept is True

    def test_non_lab_class(self):
        concept = ConceptRecord.model_validate(make_concept("c-2", "Pulse", "Finding"))
        assert concept.is_lab_concept is False
