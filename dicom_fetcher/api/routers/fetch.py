"""Batch fetch router, the endpoints the viewer front-end calls.

Individual instance failures are reported inside the 200 response; only
malformed requests, metadata resolution failures and rejected credentials
become HTTP errors.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from dicom_fetcher.api.dependencies import FetchServiceDep
from dicom_fetcher.services.fetch import FetchInstancesRequest, FetchResponse, FetchStudyRequest
from dicom_fetcher.utils.logger import logger

router = APIRouter()

CACHE_STATUS_HEADER = "X-Cache-Status"


@router.post("/fetch-study")
async def fetch_study(body: FetchStudyRequest, service: FetchServiceDep) -> JSONResponse:
    """Fetch preview images for every instance of a study.

    Args:
        body: Request with ``studyId`` and an optional ``timeout`` in seconds
        service: Fetch service

    Returns:
        Aggregate result with per-instance images and an ``X-Cache-Status`` header
    """
    logger.info(f"Received request for study ID: {body.study_id}")
    result = await service.fetch_study(body.study_id, timeout=body.timeout)

    response = FetchResponse.from_batch(result.batch, study_id=result.study_id)
    return JSONResponse(
        content=response.model_dump(),
        headers={CACHE_STATUS_HEADER: result.cache_status.value},
    )


@router.post("/fetch-instances")
async def fetch_instances(body: FetchInstancesRequest, service: FetchServiceDep) -> JSONResponse:
    """Fetch preview images for an explicit list of instances.

    Args:
        body: Request with ``instanceIds`` and an optional ``timeout`` in seconds
        service: Fetch service

    Returns:
        Aggregate result in request order with an ``X-Cache-Status`` header
    """
    logger.info(f"Received request for {len(body.instance_ids)} instances")
    batch = await service.fetch_instances(body.instance_ids, timeout=body.timeout)

    response = FetchResponse.from_batch(batch)
    return JSONResponse(
        content=response.model_dump(exclude_none=True),
        headers={CACHE_STATUS_HEADER: batch.cache_status.value},
    )
