"""Builders for FHIR Observation and concept test data, plus a fake remote API."""

from typing import Any

import httpx

BASE_URL = "http://openmrs.test/openmrs"


def make_observation(
    obs_id: str,
    concept_uuid: str,
    effective: str = "2024-01-05T08:00:00",
    *,
    value: float | None = None,
    members: list[str] | None = None,
    unit: str = "g/dL",
) -> dict:
    """Create a minimal FHIR Observation resource as returned by the FHIR2 search."""
    obs: dict[str, Any] = {
        "resourceType": "Observation",
        "id": obs_id,
        "status": "final",
        "category": [{"coding": [{"code": "laboratory"}]}],
        "code": {"coding": [{"code": concept_uuid, "display": concept_uuid}]},
        "effectiveDateTime": effective,
    }
    if value is not None:
        obs["valueQuantity"] = {"value": value, "unit": unit}
    if members is not None:
        obs["hasMember"] = [{"reference": f"Observation/{member}"} for member in members]
    return obs


def make_concept(
    uuid: str,
    display: str,
    concept_class: str = "Test",
    **ranges: float | None,
) -> dict:
    """Create a concept record as returned by /ws/rest/v1/concept/{uuid}?v=full."""
    concept: dict[str, Any] = {
        "uuid": uuid,
        "display": display,
        "conceptClass": {"uuid": f"class-{concept_class}", "display": concept_class, "name": concept_class},
        "hiAbsolute": None,
        "hiCritical": None,
        "hiNormal": None,
        "lowAbsolute": None,
        "lowCritical": None,
        "lowNormal": None,
        "units": "g/dL" if concept_class == "Test" else None,
        "datatype": {"display": "Numeric" if concept_class == "Test" else "N/A"},
    }
    concept.update(ranges)
    return concept


class FakeOpenMRS:
    """In-memory stand-in for the OpenMRS FHIR2 + REST endpoints.

    Serves ``observations`` (newest first) through the paged Observation
    search and ``concepts`` through the concept endpoint. Every request is
    recorded in ``requests``.
    """

    def __init__(
        self,
        observations: list[dict] | None = None,
        concepts: list[dict] | None = None,
    ):
        self.observations: list[dict] = observations or []
        self.concepts: dict[str, dict] = {c["uuid"]: c for c in concepts or []}
        self.requests: list[httpx.Request] = []
        self.total_override: int | None = None
        self.failing_offsets: set[int] = set()
        self.failing_concepts: set[str] = set()
        self.transport = httpx.MockTransport(self.handler)

    def add_concepts(self, *concepts: dict) -> None:
        for concept in concepts:
            self.concepts[concept["uuid"]] = concept

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/ws/fhir2/R4/Observation"):
            count = int(request.url.params["_count"])
            offset = int(request.url.params.get("_getpagesoffset", "0"))
            if offset in self.failing_offsets:
                return httpx.Response(500, text="Internal Server Error")
            page = self.observations[offset:offset + count]
            bundle: dict[str, Any] = {
                "resourceType": "Bundle",
                "type": "searchset",
                "total": self.total_override if self.total_override is not None else len(self.observations),
            }
            if page:
                bundle["entry"] = [{"resource": obs} for obs in page]
            return httpx.Response(200, json=bundle)

        if "/ws/rest/v1/concept/" in path:
            concept_uuid = path.rsplit("/", 1)[-1]
            if concept_uuid in self.failing_concepts:
                return httpx.Response(503, text="Service Unavailable")
            concept = self.concepts.get(concept_uuid)
            if concept is None:
                return httpx.Response(404, json={"error": {"message": "Object not found"}})
            return httpx.Response(200, json=concept)

        return httpx.Response(404, text="Not Found")

    # -- request log helpers --

    def observation_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/Observation")]

    def page_requests(self) -> list[httpx.Request]:
        """Observation searches excluding freshness probes (_count=1)."""
        return [r for r in self.observation_requests() if r.url.params["_count"] != "1"]

    def probe_requests(self) -> list[httpx.Request]:
        return [r for r in self.observation_requests() if r.url.params["_count"] == "1"]

    def concept_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/concept/" in r.url.path]
