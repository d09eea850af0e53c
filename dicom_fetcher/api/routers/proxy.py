"""Single-resource passthrough endpoints backed by the same cache.

Serve the requests the viewer's proxy routes make one at a time: a single
preview image, the light series listing of a study and its OHIF metadata.
"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response

from dicom_fetcher.api.dependencies import FetchServiceDep
from dicom_fetcher.api.routers.fetch import CACHE_STATUS_HEADER
from dicom_fetcher.services.fetch import CacheStatus

router = APIRouter()

PREVIEW_CACHE_CONTROL = "public, max-age=3600"


@router.get("/instances/{instance_id}/preview")
async def get_instance_preview(instance_id: str, service: FetchServiceDep) -> Response:
    """Return the preview image of one instance.

    Args:
        instance_id: Orthanc instance ID
        service: Fetch service

    Returns:
        Raw image bytes with caching headers
    """
    result = await service.get_preview(instance_id)
    status = CacheStatus.HIT if result.cached else CacheStatus.MISS
    return Response(
        content=result.payload,
        media_type=result.content_type,
        headers={
            "Cache-Control": PREVIEW_CACHE_CONTROL,
            CACHE_STATUS_HEADER: status.value,
        },
    )


@router.get("/studies/{study_id}/series")
async def get_study_series(study_id: str, service: FetchServiceDep) -> dict[str, Any]:
    """List the series of a study with their instance IDs."""
    series = await service.get_study_series(study_id)
    return {
        "series": [s.model_dump() for s in series],
        "totalSeries": len(series),
    }


@router.get("/studies/{study_id}/metadata")
async def get_study_metadata(study_id: str, service: FetchServiceDep) -> Any:
    """Return Orthanc's OHIF DICOM JSON for a study."""
    return await service.get_study_metadata(study_id)
