"""Batch fetch service: study and instance fetching behind cache and deduplication."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Sequence
from typing import Any

from dicom_fetcher.exceptions import (
    InstanceFetchError,
    MalformedRequestError,
    MetadataResolutionError,
    UpstreamAuthError,
)
from dicom_fetcher.services.fetch.cache import ResultCache
from dicom_fetcher.services.fetch.inflight import InFlightTable
from dicom_fetcher.services.fetch.models import BatchResult, FetchResult, Series, StudyFetchResult
from dicom_fetcher.services.fetch.orchestrator import BatchFetchOrchestrator
from dicom_fetcher.services.fetch.resolver import StudyResolver
from dicom_fetcher.services.fetch.worker import InstanceFetchWorker
from dicom_fetcher.services.orthanc.client import OrthancClient
from dicom_fetcher.settings import Settings
from dicom_fetcher.utils.logger import logger


class FetchService:
    """Entry point used by the API and the CLI.

    Owns the process-wide cache and deduplication tables for its lifetime.
    Concurrent ``fetch_study`` calls for one study share a single resolution
    and a single batch. The first caller's timeout governs the shared run; a
    caller that joins it waits at most its own timeout and otherwise gets what
    the cache holds so far.
    """

    def __init__(
        self,
        client: OrthancClient,
        cache: ResultCache,
        orchestrator: BatchFetchOrchestrator,
        resolver: StudyResolver,
        batch_timeout: float | None = None,
    ):
        """Initialize the service.

        Args:
            client: Shared Orthanc client
            cache: Shared result cache
            orchestrator: Batch orchestrator for instance fetches
            resolver: Study to series resolver
            batch_timeout: Default wall-clock limit for a batch in seconds
        """
        self._client = client
        self._cache = cache
        self._orchestrator = orchestrator
        self._resolver = resolver
        self.batch_timeout = batch_timeout
        self._study_flights: InFlightTable[StudyFetchResult] = InFlightTable("study fetch")
        self._expiry_task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings, client: OrthancClient | None = None) -> FetchService:
        """Build the service and its collaborators from settings.

        Args:
            settings: Service settings
            client: Optional prebuilt Orthanc client

        Returns:
            Configured FetchService
        """
        if client is None:
            client = OrthancClient(
                base_url=settings.orthanc_url,
                token=settings.orthanc_token,
                username=settings.orthanc_username,
                password=settings.orthanc_password,
                timeout=settings.request_timeout,
                max_connections=settings.max_connections,
            )
        cache = ResultCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_size_bytes=settings.cache_max_size_bytes,
            study_max_entries=settings.study_cache_max_entries,
        )
        worker = InstanceFetchWorker(
            client,
            retry_count=settings.fetch_retry_count,
            retry_delay=settings.fetch_retry_delay,
            max_delay=settings.fetch_retry_max_delay,
            use_jitter=settings.fetch_retry_jitter,
        )
        orchestrator = BatchFetchOrchestrator(
            worker, cache, max_concurrency=settings.max_concurrency
        )
        return cls(
            client=client,
            cache=cache,
            orchestrator=orchestrator,
            resolver=StudyResolver(client, cache),
            batch_timeout=settings.batch_timeout,
        )

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def study_flights(self) -> InFlightTable[StudyFetchResult]:
        return self._study_flights

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.batch_timeout

    @staticmethod
    def _check_auth(batch: BatchResult, what: str) -> None:
        if batch.auth_rejected:
            raise UpstreamAuthError(f"Upstream PACS rejected credentials while fetching {what}")

    async def fetch_instances(
        self, instance_ids: Sequence[str], timeout: float | None = None
    ) -> BatchResult:
        """Fetch an explicit list of instances.

        Args:
            instance_ids: Instance IDs; order and duplicates are preserved in the result
            timeout: Batch timeout override in seconds

        Returns:
            BatchResult with one entry per requested ID

        Raises:
            MalformedRequestError: If the list is empty or contains blank IDs
            UpstreamAuthError: If Orthanc rejected the credentials
        """
        if not instance_ids:
            raise MalformedRequestError("Array of instance IDs required")
        if any(not isinstance(i, str) or not i.strip() for i in instance_ids):
            raise MalformedRequestError("Instance IDs must be non-empty strings")

        batch = await self._orchestrator.fetch_batch(
            list(instance_ids), timeout=self._timeout(timeout)
        )
        self._check_auth(batch, f"{len(instance_ids)} instances")
        return batch

    async def fetch_study(self, study_id: str, timeout: float | None = None) -> StudyFetchResult:
        """Resolve a study and fetch all of its instances.

        Args:
            study_id: Orthanc study ID
            timeout: Batch timeout override in seconds

        Returns:
            StudyFetchResult with series metadata and the batch result

        Raises:
            MalformedRequestError: If the study ID is blank
            StudyNotFoundError: If the study does not exist upstream
            MetadataResolutionError: If the study metadata cannot be resolved, or a
                joining caller times out before the shared run has resolved it
            UpstreamAuthError: If Orthanc rejected the credentials
        """
        if not study_id or not study_id.strip():
            raise MalformedRequestError("studyId is required")

        limit = self._timeout(timeout)

        def start_run() -> Awaitable[StudyFetchResult]:
            return self._process_study(study_id, limit)

        if limit is None or study_id not in self._study_flights:
            return await self._study_flights.run(study_id, start_run)

        # Joining another caller's run: its timeout governs the run, ours the wait
        start = time.perf_counter()
        deadline = asyncio.timeout(limit)
        try:
            async with deadline:
                return await self._study_flights.run(study_id, start_run)
        except TimeoutError:
            if not deadline.expired():
                raise
            return self._partial_study(study_id, limit, time.perf_counter() - start)

    def _partial_study(self, study_id: str, timeout: float, elapsed: float) -> StudyFetchResult:
        series = self._cache.get_study(study_id)
        if series is None:
            raise MetadataResolutionError(
                f"Timed out after {timeout}s resolving study {study_id}"
            )

        instance_ids = [iid for s in series for iid in s.instances]
        batch = self._orchestrator.cached_batch(
            instance_ids, f"Timed out after {timeout}s", processing_time=elapsed
        )
        logger.warning(
            f"Returning partial study {study_id} after {timeout}s: "
            f"{batch.success_count}/{batch.total_requested} images ready"
        )
        return StudyFetchResult(study_id=study_id, series=series, batch=batch, series_cached=True)

    async def _process_study(self, study_id: str, timeout: float | None) -> StudyFetchResult:
        series, series_cached = await self._resolver.resolve(study_id)
        instance_ids = [iid for s in series for iid in s.instances]

        batch = await self._orchestrator.fetch_batch(instance_ids, timeout=timeout)
        self._check_auth(batch, f"study {study_id}")

        result = StudyFetchResult(
            study_id=study_id, series=series, batch=batch, series_cached=series_cached
        )
        logger.info(
            f"Processed study {study_id} ({result.cache_status.value}): "
            f"{batch.success_count}/{batch.total_requested} images "
            f"in {batch.processing_time:.2f}s"
        )
        return result

    async def get_study_series(self, study_id: str) -> list[Series]:
        """Resolve a study's series without fetching any image."""
        if not study_id or not study_id.strip():
            raise MalformedRequestError("studyId is required")
        series, _ = await self._resolver.resolve(study_id)
        return series

    async def get_study_metadata(self, study_id: str) -> Any:
        """Pass through Orthanc's OHIF DICOM JSON for a study."""
        if not study_id or not study_id.strip():
            raise MalformedRequestError("studyId is required")
        return await self._client.get_study_ohif_json(study_id)

    async def get_preview(self, instance_id: str) -> FetchResult:
        """Fetch a single preview image through the cache.

        Raises:
            MalformedRequestError: If the instance ID is blank
            UpstreamAuthError: If Orthanc rejected the credentials
            InstanceFetchError: If the image could not be fetched
        """
        if not instance_id or not instance_id.strip():
            raise MalformedRequestError("Instance ID required")

        result = await self._orchestrator.fetch_instance(instance_id)
        if result.auth_rejected:
            raise UpstreamAuthError(
                f"Upstream PACS rejected credentials for instance {instance_id}"
            )
        if not result.success:
            raise InstanceFetchError(
                instance_id,
                result.error or "Failed to fetch image",
                status_code=result.upstream_status,
            )
        return result

    def cache_stats(self) -> dict[str, Any]:
        stats = self._cache.stats()
        stats["in_flight_studies"] = len(self._study_flights)
        stats["in_flight_instances"] = len(self._orchestrator.in_flight)
        return stats

    def clear_cache(self) -> None:
        self._cache.clear()

    async def evict_expired(self) -> int:
        """Drop expired cache entries off the event loop thread."""
        return await asyncio.to_thread(self._cache.evict_expired)

    def start_expiry(self, interval: float) -> None:
        """Evict expired entries every ``interval`` seconds until ``close``.

        ``TTLCache`` on its own only expires entries on access or insert.
        """
        if self._expiry_task is not None and not self._expiry_task.done():
            return
        self._expiry_task = asyncio.create_task(self._expire_periodically(interval))
        logger.info(f"Cache expiry scheduled every {interval}s")

    async def _expire_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.evict_expired()
            except Exception:
                logger.exception("Cache expiry failed")

    async def close(self) -> None:
        """Stop cache expiry, cancel in-flight work and close the upstream client."""
        if self._expiry_task is not None:
            self._expiry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._expiry_task
            self._expiry_task = None
        await self._study_flights.cancel_all()
        await self._orchestrator.in_flight.cancel_all()
        await self._client.close()
