"""Async client for the remote clinical record API (OpenMRS).

Two endpoints are consumed:
  - FHIR2 Observation search  ->  GET {base}/ws/fhir2/R4/Observation
  - Concept dictionary lookup ->  GET {base}/ws/rest/v1/concept/{uuid}?v=full

Usage (async context manager, preferred):
    async with OpenMRSClient() as client:
        bundle = await client.search_observations(patient_uuid, count=100, offset=0)

Usage (manual lifecycle):
    client = OpenMRSClient()
    await client.connect()
    ...
    await client.close()
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from labresults.config import settings

logger = logging.getLogger(__name__)


class OpenMRSAPIError(Exception):
    """Raised when a request to the remote record API fails.

    ``status_code`` is 0 for transport-level failures (connection refused,
    timeout) and the HTTP status otherwise.
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"OpenMRS API error {status_code}: {body}")


class OpenMRSClient:
    """Async OpenMRS client for laboratory observations and concepts.

    Args:
        base_url: Base URL of the OpenMRS webapp (e.g. ``http://host/openmrs``).
                  Defaults to ``settings.openmrs_base_url``.
        timeout:  HTTP request timeout in seconds.
        http:     Optional pre-configured ``httpx.AsyncClient`` (for testing).
                  An injected client is never closed by this object.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.openmrs_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._http = http
        self._owns_http = http is None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
            self._owns_http = True
            logger.debug("OpenMRSClient: HTTP transport initialised.")

    async def close(self) -> None:
        """Close the underlying HTTP connection pool if we own it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
            logger.debug("OpenMRSClient: HTTP transport closed.")

    async def __aenter__(self) -> OpenMRSClient:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── URL helpers ──────────────────────────────────────────────────────────

    @property
    def _observation_url(self) -> str:
        return f"{self.base_url}/ws/fhir2/R4/Observation"

    def _concept_url(self, concept_uuid: str) -> str:
        return f"{self.base_url}/ws/rest/v1/concept/{concept_uuid}"

    # ── Internal request helper ──────────────────────────────────────────────

    async def _get_json(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """GET ``url`` and return the parsed JSON body.

        Raises:
            RuntimeError:    if ``connect()`` / ``__aenter__`` was not called.
            OpenMRSAPIError: on transport failure or a non-2xx response.
        """
        if self._http is None:
            raise RuntimeError(
                "OpenMRSClient is not connected. "
                "Use 'async with OpenMRSClient() as client:' or call connect() first."
            )

        logger.debug("OpenMRSClient: GET %s params=%s", url, params)
        try:
            resp = await self._http.get(
                url, params=params, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise OpenMRSAPIError(0, str(exc)) from exc

        if resp.status_code not in range(200, 300):
            raise OpenMRSAPIError(resp.status_code, resp.text)

        try:
            return resp.json() if resp.content else {}
        except ValueError as exc:
            raise OpenMRSAPIError(resp.status_code, f"Invalid JSON body: {exc}") from exc

    # ── Public API ───────────────────────────────────────────────────────────

    async def search_observations(
        self,
        patient_uuid: str,
        *,
        count: int,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Fetch one page of a patient's laboratory observations, newest first.

        Args:
            patient_uuid: Patient UUID.
            count:        Page size (``_count``).
            offset:       Zero-based page number; sent as
                          ``_getpagesoffset = offset * count``.

        Returns:
            A FHIR searchset Bundle (dict) with ``total`` and ``entry``.
        """
        params = {
            "patient": patient_uuid,
            "category": "laboratory",
            "_sort": "-_date",
            "_summary": "data",
            "_format": "json",
            "_count": str(count),
            "_getpagesoffset": str(offset * count),
        }
        return await self._get_json(self._observation_url, params)

    async def latest_observation_id(self, patient_uuid: str) -> str | None:
        """Return the id of the patient's newest laboratory observation.

        Used as a cheap freshness probe; None when the patient has none.
        """
        bundle = await self.search_observations(patient_uuid, count=1)
        entries = bundle.get("entry") or []
        if not entries:
            return None
        return (entries[0].get("resource") or {}).get("id")

    async def get_concept(self, concept_uuid: str) -> dict[str, Any]:
        """Fetch a concept with full verbosity (ranges, units, class)."""
        return await self._get_json(self._concept_url(concept_uuid), {"v": "full"})
