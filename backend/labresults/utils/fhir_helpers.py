"""Shared FHIR resource parsing utilities.

Consolidates the extraction patterns used when consuming Observation search
results from the remote record API. All functions are pure and handle
missing/malformed data gracefully.
"""

import re
from datetime import datetime, timezone
from typing import Any

# Sort key for observations without a usable effectiveDateTime (oldest possible)
_EPOCH_FLOOR = datetime.min.replace(tzinfo=timezone.utc)

# Trailing UTC offset written without a colon ("+0000")
_COMPACT_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def extract_reference_id(reference: str | None) -> str | None:
    """Extract FHIR ID from a reference string.

    Handles both formats:
    - "urn:uuid:abc-123" -> "abc-123"
    - "Observation/abc-123" -> "abc-123"

    Args:
        reference: FHIR reference string

    Returns:
        Extracted ID or None if reference is empty/None
    """
    if not reference:
        return None

    if reference.startswith("urn:uuid:"):
        return reference[9:]  # len("urn:uuid:")
    elif "/" in reference:
        return reference.split("/")[-1]
    return reference


def extract_member_ids(resource: dict[str, Any]) -> list[str | None]:
    """Extract hasMember reference IDs from an Observation, keeping positions.

    Unlike a plain filter, a malformed member reference stays in the list as
    None so slot indexes line up with the declared members.
    """
    return [
        extract_reference_id(member.get("reference")) if isinstance(member, dict) else None
        for member in resource.get("hasMember") or []
    ]


def extract_first_coding(codeable_concept: dict[str, Any]) -> dict[str, Any]:
    """Extract first coding from a FHIR CodeableConcept.

    Args:
        codeable_concept: FHIR CodeableConcept structure

    Returns:
        First coding dict or empty dict if none
    """
    codings = codeable_concept.get("coding", [])
    return codings[0] if codings else {}


def extract_concept_uuid(resource: dict[str, Any]) -> str | None:
    """Return the concept UUID classifying an Observation (code.coding[0].code)."""
    return extract_first_coding(resource.get("code") or {}).get("code")


def extract_quantity_value(resource: dict[str, Any]) -> float | None:
    """Return the numeric valueQuantity.value of an Observation, or None."""
    vq = resource.get("valueQuantity")
    if not isinstance(vq, dict):
        return None
    value = vq.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_effective_datetime(value: str | None) -> datetime:
    """Parse an effectiveDateTime into an aware datetime for ordering.

    Naive timestamps are treated as UTC and compact offsets ("+0000") are
    accepted. Missing or unparseable values sort as the oldest possible
    instant.
    """
    if not value:
        return _EPOCH_FLOOR
    try:
        normalized = value.replace("Z", "+00:00")
        if "T" in normalized:
            normalized = _COMPACT_OFFSET_RE.sub(r"\1:\2", normalized)
        dt = datetime.fromisoformat(normalized)
    except (ValueError, TypeError):
        try:
            dt = datetime.strptime(value[:10], "%Y-%m-%d")
        except (ValueError, TypeError):
            return _EPOCH_FLOOR
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
