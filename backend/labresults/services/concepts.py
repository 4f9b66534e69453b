"""Concept metadata resolution with process-lifetime memoization.

Every distinct concept referenced by a patient's observations is looked up
once in the concept dictionary of the remote API. The memo holds the
in-flight task rather than only the finished record, so concurrent loads
that need the same concept share a single request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from labresults.schemas.lab_results import ConceptRecord
from labresults.services.openmrs_client import OpenMRSClient
from labresults.utils.concurrency import gather_all
from labresults.utils.fhir_helpers import extract_concept_uuid

logger = logging.getLogger(__name__)


def present_concept_uuids(entries: list[dict[str, Any]]) -> list[str]:
    """Distinct concept UUIDs referenced by raw observations, first-seen order."""
    uuids = (extract_concept_uuid(entry) for entry in entries)
    return list(dict.fromkeys(uuid for uuid in uuids if uuid))


class ConceptResolver:
    """Resolves and memoizes concept records for observation categories.

    One instance lives for the whole process (see LabResultsService). The
    memo is unbounded; the number of distinct lab concepts is small.

    The memo is only touched from the event loop thread. A multi-threaded
    caller would need a lock around ``_memo``.
    """

    def __init__(self, client: OpenMRSClient):
        self._client = client
        self._memo: dict[str, asyncio.Task[ConceptRecord]] = {}

    def __len__(self) -> int:
        return len(self._memo)

    def _lookup(self, concept_uuid: str) -> asyncio.Task[ConceptRecord]:
        task = self._memo.get(concept_uuid)
        if task is not None:
            logger.debug("Concept %s served from memo", concept_uuid)
            return task

        task = asyncio.ensure_future(self._fetch(concept_uuid))
        self._memo[concept_uuid] = task
        return task

    async def _fetch(self, concept_uuid: str) -> ConceptRecord:
        try:
            data = await self._client.get_concept(concept_uuid)
            return ConceptRecord.model_validate(data)
        except BaseException:
            # Failed lookups are not memoized so a later load can retry
            self._memo.pop(concept_uuid, None)
            raise

    async def resolve(self, concept_uuid: str) -> ConceptRecord:
        """Return the concept record for one UUID, fetching it at most once."""
        # shield: a caller giving up must not cancel a lookup others await
        return await asyncio.shield(self._lookup(concept_uuid))

    async def load_present_concepts(self, entries: list[dict[str, Any]]) -> list[ConceptRecord]:
        """Resolve every concept referenced by the given raw observations.

        Unseen concepts are fetched concurrently; memoized ones are reused.

        Raises:
            OpenMRSAPIError: if any concept lookup fails.
        """
        return await gather_all(self.resolve(uuid) for uuid in present_concept_uuids(entries))

    async def load_lab_concepts(self, entries: list[dict[str, Any]]) -> list[ConceptRecord]:
        """Like ``load_present_concepts`` but keeps only Test and LabSet concepts."""
        concepts = await self.load_present_concepts(entries)
        return [concept for concept in concepts if concept.is_lab_concept]
