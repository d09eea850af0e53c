"""Exceptions for DICOM Fetcher."""

from dicom_fetcher.exceptions.domain import (
    FetcherError,
    InstanceFetchError,
    MalformedRequestError,
    MetadataResolutionError,
    StudyNotFoundError,
    UpstreamAuthError,
    UpstreamError,
)

__all__ = [
    "FetcherError",
    "InstanceFetchError",
    "MalformedRequestError",
    "MetadataResolutionError",
    "StudyNotFoundError",
    "UpstreamAuthError",
    "UpstreamError",
]
