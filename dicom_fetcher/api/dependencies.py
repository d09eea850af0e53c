"""
Common dependencies for DICOM Fetcher API endpoints.

The fetch service is created once in the application lifespan and stored on
``app.state``; endpoints receive it through ``FetchServiceDep``.
"""

from typing import Annotated

from fastapi import Depends, Request

from dicom_fetcher.services.fetch import FetchService


async def get_fetch_service(request: Request) -> FetchService:
    """
    Get the process-wide fetch service.

    Args:
        request: FastAPI request object

    Returns:
        FetchService bound to the running application
    """
    service: FetchService = request.app.state.fetch_service
    return service


FetchServiceDep = Annotated[FetchService, Depends(get_fetch_service)]
