"""
Exception handlers for converting domain exceptions to HTTP responses.

This module maps domain exceptions to appropriate HTTP status codes
and response formats for the API layer using FastAPI decorators.
Per-instance fetch failures never reach these handlers: they are embedded
in the 200 response of the batch endpoints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dicom_fetcher.utils.logger import logger

if TYPE_CHECKING:
    from fastapi import FastAPI


def _describe_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid request"


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers using decorators.

    Args:
        app: FastAPI application instance
    """
    from dicom_fetcher.exceptions.domain import (
        InstanceFetchError,
        MalformedRequestError,
        MetadataResolutionError,
        StudyNotFoundError,
        UpstreamAuthError,
    )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        """Convert body/query validation failures to 400 response."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": _describe_validation_error(exc)},
        )

    @app.exception_handler(MalformedRequestError)
    async def handle_malformed_request(_: Request, exc: MalformedRequestError) -> JSONResponse:
        """Convert MalformedRequestError to 400 response."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc) if str(exc) else "Malformed request"},
        )

    @app.exception_handler(StudyNotFoundError)
    async def handle_study_not_found(_: Request, exc: StudyNotFoundError) -> JSONResponse:
        """Convert StudyNotFoundError to 404 response."""
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc)},
        )

    @app.exception_handler(MetadataResolutionError)
    async def handle_metadata_resolution(
        _: Request, exc: MetadataResolutionError
    ) -> JSONResponse:
        """Convert MetadataResolutionError to 502 response."""
        logger.error(f"Metadata resolution failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc) if str(exc) else "Failed to resolve study metadata"},
        )

    @app.exception_handler(UpstreamAuthError)
    async def handle_upstream_auth(_: Request, exc: UpstreamAuthError) -> JSONResponse:
        """Convert UpstreamAuthError to 502 response.

        The client did nothing wrong; the service credentials are misconfigured.
        """
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc)},
        )

    @app.exception_handler(InstanceFetchError)
    async def handle_instance_fetch(_: Request, exc: InstanceFetchError) -> JSONResponse:
        """Convert InstanceFetchError (single image requests only) to 404 or 502 response."""
        status_code = (
            status.HTTP_404_NOT_FOUND if exc.status_code == 404 else status.HTTP_502_BAD_GATEWAY
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": f"Failed to fetch image: {exc}"},
        )
