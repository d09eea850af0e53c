"""
Domain exceptions for the fetch service layer.

These exceptions are used in the Orthanc client and the fetch services to
represent failures without coupling to HTTP status codes. The API layer maps
them to responses in ``dicom_fetcher.api.exception_handlers``.
"""

from typing import Self


class FetcherError(Exception):
    """Base exception for all DICOM Fetcher errors."""

    def with_context(self, detail: str) -> Self:
        """Add context information to the exception.

        Args:
            detail: Additional details about the error

        Returns:
            Self with updated message
        """
        self.args = (detail,)
        return self


class MalformedRequestError(FetcherError):
    """Raised when a fetch request is invalid before any upstream call is made."""

    pass


class UpstreamError(FetcherError):
    """Base exception for failures talking to the upstream PACS."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MetadataResolutionError(UpstreamError):
    """Raised when study or series metadata cannot be resolved.

    Fatal to the whole request, unlike a single image failure.
    """

    pass


class StudyNotFoundError(MetadataResolutionError):
    """Raised when the upstream PACS does not know the study."""

    def __init__(self, study_id: str):
        super().__init__(f"Study '{study_id}' not found", status_code=404)
        self.study_id = study_id


class InstanceFetchError(UpstreamError):
    """Raised when a single instance image cannot be fetched.

    Recoverable: the fetch worker turns it into a failed ``FetchResult``.
    """

    def __init__(
        self,
        instance_id: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, status_code=status_code)
        self.instance_id = instance_id
        self.retryable = retryable


class UpstreamAuthError(UpstreamError):
    """Raised when the upstream PACS rejects the configured credentials."""

    def __init__(self, message: str = "Upstream PACS rejected credentials", status_code: int = 401):
        super().__init__(message, status_code=status_code)
