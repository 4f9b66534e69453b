"""Lab results API routes: reconstructed panels and per-panel timelines.

The engine does all the work (fetching, concept resolution, reconstruction,
caching); these handlers only translate its outcomes into HTTP:
  - upstream record API failure  -> 502
  - requested panel not present  -> 404 "panel data missing"
  - background load still running -> 202 "loading"
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from labresults.schemas.lab_results import LabResultsResponse
from labresults.services.lab_results import LabResultsService
from labresults.services.openmrs_client import OpenMRSAPIError
from labresults.services.timeline import PanelDataMissingError

router = APIRouter(prefix="/patients", tags=["lab-results"])


def get_lab_results_service(request: Request) -> LabResultsService:
    """Return the process-wide service created in the application lifespan."""
    return request.app.state.lab_results


def _upstream_error(exc: OpenMRSAPIError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={
            "message": "Upstream clinical record API error",
            "upstream_status": exc.status_code,
        },
    )


@router.get("/{patient_id}/lab-results")
async def get_lab_results(
    patient_id: str,
    service: LabResultsService = Depends(get_lab_results_service),
) -> dict:
    """Get a patient's laboratory results grouped by panel or test name.

    Each group holds its observations newest first; panel observations carry
    their resolved members, with null where a member could not be found.

    Args:
        patient_id: Patient UUID in the remote record system.

    Returns:
        The patient id and the grouped results.

    Raises:
        HTTPException: 502 if the remote record API fails.
    """
    try:
        groups = await service.aggregate(patient_id)
    except OpenMRSAPIError as exc:
        raise _upstream_error(exc) from exc
    return LabResultsResponse(patient_id=patient_id, groups=groups).model_dump(
        mode="json", by_alias=True
    )


@router.get("/{patient_id}/lab-results/status")
async def get_lab_results_status(
    patient_id: str,
    service: LabResultsService = Depends(get_lab_results_service),
) -> JSONResponse:
    """Poll a background load of a patient's lab results.

    Returns 202 with status "loading" until the load finishes, then 200 with
    the data, or 502 with the failure cause.
    """
    state = service.status(patient_id)
    status_codes = {
        "loading": status.HTTP_202_ACCEPTED,
        "loaded": status.HTTP_200_OK,
        "error": status.HTTP_502_BAD_GATEWAY,
    }
    return JSONResponse(
        status_code=status_codes[state.status],
        content=state.model_dump(mode="json", by_alias=True),
    )


@router.get("/{patient_id}/lab-results/panels/{panel_id}/timeline")
async def get_panel_timeline(
    patient_id: str,
    panel_id: str,
    service: LabResultsService = Depends(get_lab_results_service),
) -> dict:
    """Get the timeline table of one panel (by concept UUID).

    Raises:
        HTTPException: 404 if the patient has no results for the panel,
            502 if the remote record API fails.
    """
    try:
        timeline = await service.timeline(patient_id, panel_id)
    except OpenMRSAPIError as exc:
        raise _upstream_error(exc) from exc
    except PanelDataMissingError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return timeline.model_dump(mode="json", by_alias=True)
