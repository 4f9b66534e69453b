"""Freshness-validated cache of reconstructed lab results.

Holds the results of the most recently loaded patients. A cached record is
only reused after a remote probe confirms the patient's newest observation
id still matches the one seen when the record was built; any new, edited or
deleted result changes that id and forces a rebuild.

There is no time-based expiry. Records are evicted oldest-created first once
more than ``max_entries`` patients are held.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from labresults.config import settings
from labresults.schemas.lab_results import PatientAggregate

logger = logging.getLogger(__name__)

FreshnessProbe = Callable[[str], Awaitable[str | None]]


@dataclass
class CacheRecord:
    """Cached aggregate plus the indicator it was built against."""

    data: PatientAggregate
    indicator: str | None
    created_at: float = field(default_factory=time.time)


class FreshnessCache:
    """Small per-patient cache validated by a remote freshness probe.

    Args:
        probe: Coroutine returning the newest observation id for a patient.
        max_entries: Number of patients kept (defaults to settings).
    """

    def __init__(self, probe: FreshnessProbe, max_entries: int | None = None):
        self._probe = probe
        self.max_entries = max_entries or settings.results_cache_size
        # Insertion order == creation order; put() re-inserts on overwrite
        self._records: dict[str, CacheRecord] = {}

    def __contains__(self, patient_uuid: str) -> bool:
        return patient_uuid in self._records

    def __len__(self) -> int:
        return len(self._records)

    def patient_ids(self) -> list[str]:
        """Cached patient ids, oldest first."""
        return list(self._records)

    async def get(self, patient_uuid: str) -> PatientAggregate | None:
        """Return cached results if the remote probe confirms they are current.

        The probe runs on every hit; a miss never probes.

        Raises:
            OpenMRSAPIError: if the probe request fails.
        """
        record = self._records.get(patient_uuid)
        if record is None:
            logger.debug("Results cache miss for patient %s", patient_uuid)
            return None

        latest = await self._probe(patient_uuid)
        if latest != record.indicator:
            logger.debug(
                "Results cache stale for patient %s (cached=%s, latest=%s)",
                patient_uuid, record.indicator, latest,
            )
            return None

        logger.debug("Results cache hit for patient %s", patient_uuid)
        return record.data

    def put(self, patient_uuid: str, data: PatientAggregate, indicator: str | None) -> None:
        """Store results for a patient and evict beyond ``max_entries``."""
        self._records.pop(patient_uuid, None)
        self._records[patient_uuid] = CacheRecord(data=data, indicator=indicator)

        while len(self._records) > self.max_entries:
            evicted = next(iter(self._records))
            del self._records[evicted]
            logger.info("Evicted cached lab results for patient %s", evicted)

    def clear(self) -> None:
        self._records.clear()
