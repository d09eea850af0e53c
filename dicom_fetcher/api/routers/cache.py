"""Cache inspection and maintenance endpoints."""

from typing import Any

from fastapi import APIRouter

from dicom_fetcher.api.dependencies import FetchServiceDep

router = APIRouter()


@router.get("/cache-stats")
async def cache_stats(service: FetchServiceDep) -> dict[str, Any]:
    """Report cache occupancy, hit counters and in-flight work."""
    return service.cache_stats()


@router.post("/clear-cache")
async def clear_cache(service: FetchServiceDep) -> dict[str, str]:
    """Drop every cached image and study."""
    service.clear_cache()
    return {"status": "cache cleared"}
