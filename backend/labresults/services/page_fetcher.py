"""Paginated retrieval of a patient's laboratory observations.

The total number of observations is unknown until the first page arrives,
so a fixed prefetch window of pages is requested concurrently up front.
When the reported total needs more pages than the window holds, the missing
pages are requested in a second concurrent burst. Pages beyond what the
total implies are discarded before flattening.
"""

import itertools
import logging
import math
from typing import Any

from labresults.config import settings
from labresults.services.openmrs_client import OpenMRSClient
from labresults.utils.concurrency import gather_all

logger = logging.getLogger(__name__)


async def load_observation_pages(
    client: OpenMRSClient,
    patient_uuid: str,
    *,
    page_size: int | None = None,
    prefetch_pages: int | None = None,
) -> list[dict[str, Any]]:
    """Fetch every observation page for a patient.

    Args:
        client: Connected remote API client.
        patient_uuid: Patient UUID.
        page_size: Observations per page (defaults to settings).
        prefetch_pages: Pages requested before the total is known (defaults
            to settings).

    Returns:
        Exactly ``ceil(total / page_size)`` Bundle pages, in page order.

    Raises:
        OpenMRSAPIError: if any page request fails.
    """
    page_size = page_size or settings.observation_page_size
    prefetch_pages = prefetch_pages or settings.observation_prefetch_pages
    offsets = itertools.count()

    def request_pages(count: int):
        return [
            client.search_observations(patient_uuid, count=page_size, offset=offset)
            for offset in itertools.islice(offsets, count)
        ]

    pages = await gather_all(request_pages(prefetch_pages))

    total = int(pages[0].get("total") or 0)
    page_count = math.ceil(total / page_size)

    if page_count > prefetch_pages:
        missing = page_count - prefetch_pages
        logger.info(
            "Patient %s has %d observations, fetching %d more pages",
            patient_uuid, total, missing,
        )
        pages += await gather_all(request_pages(missing))

    surplus = sum(1 for page in pages[page_count:] if page.get("entry"))
    if surplus:
        logger.warning(
            "Remote API served %d non-empty pages beyond reported total %d for patient %s",
            surplus, total, patient_uuid,
        )

    return pages[:page_count]


async def load_observation_entries(
    client: OpenMRSClient,
    patient_uuid: str,
    *,
    page_size: int | None = None,
    prefetch_pages: int | None = None,
) -> list[dict[str, Any]]:
    """Fetch all laboratory Observation resources for a patient, newest first.

    Returns:
        Raw FHIR Observation dicts in (page, within-page) order.
    """
    pages = await load_observation_pages(
        client, patient_uuid, page_size=page_size, prefetch_pages=prefetch_pages
    )
    return [
        entry["resource"]
        for page in pages
        for entry in page.get("entry") or []
        if entry.get("resource")
    ]
