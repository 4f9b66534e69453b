"""Lab results service: cache-checked aggregation of a patient's lab data.

One LabResultsService is created per process (FastAPI lifespan) and owns the
shared state of the engine: the remote API client, the concept memo and the
freshness cache. Routes receive it through a dependency, and tests build
their own instance with fresh caches.

Load flow for ``aggregate(patient_uuid)``:
    FreshnessCache hit (probe confirmed)  ->  return cached results
    otherwise  ->  fetch all pages  ->  resolve concepts  ->  reconstruct
               ->  store in cache with the newest observation id  ->  return

Failures propagate to the caller and nothing is cached for that attempt.

Only running loads are shared between callers. Once a load settles it is
dropped, so every later read goes through the freshness probe again.
"""

from __future__ import annotations

import asyncio
import functools
import logging

from labresults.config import settings
from labresults.schemas.lab_results import LoadState, PatientAggregate, TimelineView
from labresults.services.concepts import ConceptResolver
from labresults.services.openmrs_client import OpenMRSAPIError, OpenMRSClient
from labresults.services.page_fetcher import load_observation_entries
from labresults.services.reconstruction import freshness_indicator, reconstruct_patient_data
from labresults.services.result_cache import FreshnessCache
from labresults.services.timeline import build_timeline

logger = logging.getLogger(__name__)


class LabResultsService:
    """Aggregates, caches and projects laboratory results per patient.

    Args:
        client: Remote API client; connected by the owner before use.
        page_size: Observations per search page (defaults to settings).
        prefetch_pages: Pages requested before the total is known.
        cache_size: Number of patients kept in the results cache.
    """

    def __init__(
        self,
        client: OpenMRSClient,
        *,
        page_size: int | None = None,
        prefetch_pages: int | None = None,
        cache_size: int | None = None,
    ):
        self.client = client
        self.page_size = page_size or settings.observation_page_size
        self.prefetch_pages = prefetch_pages or settings.observation_prefetch_pages
        self.concepts = ConceptResolver(client)
        self.cache = FreshnessCache(client.latest_observation_id, max_entries=cache_size)
        # patient uuid -> running load; settled loads are removed
        self._loads: dict[str, asyncio.Task[PatientAggregate]] = {}
        # patients with a status poll waiting for the running load
        self._watched: set[str] = set()
        # settled loads not yet reported by status(), oldest first
        self._reports: dict[str, asyncio.Task[PatientAggregate]] = {}

    async def _load(self, patient_uuid: str) -> PatientAggregate:
        cached = await self.cache.get(patient_uuid)
        if cached is not None:
            return cached

        entries = await load_observation_entries(
            self.client,
            patient_uuid,
            page_size=self.page_size,
            prefetch_pages=self.prefetch_pages,
        )
        concepts = await self.concepts.load_lab_concepts(entries)
        data = reconstruct_patient_data(entries, concepts)

        self.cache.put(patient_uuid, data, freshness_indicator(entries))
        logger.info(
            "Loaded lab results for patient %s: %d observations in %d groups",
            patient_uuid, len(entries), len(data),
        )
        return data

    def _start(self, patient_uuid: str) -> asyncio.Task[PatientAggregate]:
        task = self._loads.get(patient_uuid)
        if task is None or task.done():
            task = asyncio.ensure_future(self._load(patient_uuid))
            self._loads[patient_uuid] = task
            task.add_done_callback(functools.partial(self._settle, patient_uuid))
        return task

    def _settle(self, patient_uuid: str, task: asyncio.Task[PatientAggregate]) -> None:
        if self._loads.get(patient_uuid) is task:
            del self._loads[patient_uuid]
        if not task.cancelled():
            # Mark the outcome retrieved even when every caller gave up
            task.exception()

        if patient_uuid not in self._watched:
            return
        self._watched.discard(patient_uuid)
        self._reports.pop(patient_uuid, None)
        self._reports[patient_uuid] = task
        while len(self._reports) > self.cache.max_entries:
            dropped = next(iter(self._reports))
            del self._reports[dropped]
            logger.debug("Dropped unreported lab results load for patient %s", dropped)

    async def aggregate(self, patient_uuid: str) -> PatientAggregate:
        """Return the patient's lab results grouped by panel/test name.

        Concurrent calls for the same patient share one running load. A call
        made after that load settled starts a new, probe-checked one.

        Raises:
            OpenMRSAPIError: if any request to the remote API fails.
        """
        task = self._start(patient_uuid)
        try:
            return await asyncio.shield(task)
        except OpenMRSAPIError as exc:
            logger.warning("Lab results load failed for patient %s: %s", patient_uuid, exc)
            raise

    async def timeline(self, patient_uuid: str, panel_uuid: str) -> TimelineView:
        """Return the timeline projection of one panel.

        Raises:
            OpenMRSAPIError: if loading the patient's results fails.
            PanelDataMissingError: if the patient has no results for the panel.
        """
        data = await self.aggregate(patient_uuid)
        return build_timeline(data, panel_uuid)

    def status(self, patient_uuid: str) -> LoadState:
        """Report the state of a background load without waiting for it.

        Joins the running load or starts one. A settled load is reported
        once; the next call starts a new (cache-checked) load. Only the
        ``cache.max_entries`` most recent unreported outcomes are kept.
        """
        task = self._reports.pop(patient_uuid, None)
        if task is None:
            self._watched.add(patient_uuid)
            self._start(patient_uuid)
            return LoadState(status="loading")

        if task.cancelled():
            return LoadState(status="error", error="load cancelled")

        exc = task.exception()
        if exc is None:
            return LoadState(status="loaded", data=task.result())
        if isinstance(exc, OpenMRSAPIError):
            return LoadState(status="error", error=str(exc), upstream_status=exc.status_code)
        return LoadState(status="error", error=f"{type(exc).__name__}: {exc}")

    async def close(self) -> None:
        """Cancel running loads and drop unreported outcomes."""
        for task in list(self._loads.values()):
            task.cancel()
        self._loads.clear()
        self._watched.clear()
        self._reports.clear()
