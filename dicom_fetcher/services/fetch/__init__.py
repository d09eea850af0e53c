"""Batch fetch service: cached, deduplicated, concurrent instance preview fetching."""

from dicom_fetcher.services.fetch.cache import ResultCache
from dicom_fetcher.services.fetch.inflight import InFlightTable
from dicom_fetcher.services.fetch.models import (
    BatchResult,
    CacheEntry,
    CacheStatus,
    FetchInstancesRequest,
    FetchResponse,
    FetchResult,
    FetchStudyRequest,
    Series,
    StudyFetchResult,
)
from dicom_fetcher.services.fetch.orchestrator import BatchFetchOrchestrator
from dicom_fetcher.services.fetch.resolver import StudyResolver
from dicom_fetcher.services.fetch.service import FetchService
from dicom_fetcher.services.fetch.worker import InstanceFetchWorker

__all__ = [
    "BatchFetchOrchestrator",
    "BatchResult",
    "CacheEntry",
    "CacheStatus",
    "FetchInstancesRequest",
    "FetchResponse",
    "FetchResult",
    "FetchService",
    "FetchStudyRequest",
    "InFlightTable",
    "InstanceFetchWorker",
    "ResultCache",
    "Series",
    "StudyFetchResult",
    "StudyResolver",
]
