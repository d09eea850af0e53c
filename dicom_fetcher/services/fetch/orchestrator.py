"""Concurrent batch fetching of instance previews."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

from dicom_fetcher.services.fetch.cache import ResultCache
from dicom_fetcher.services.fetch.inflight import InFlightTable
from dicom_fetcher.services.fetch.models import BatchResult, FetchResult
from dicom_fetcher.services.fetch.worker import InstanceFetchWorker
from dicom_fetcher.utils.logger import logger

PROGRESS_LOG_INTERVAL = 100


class BatchFetchOrchestrator:
    """Fans a list of instance IDs out to fetch workers with bounded concurrency.

    Cache hits are answered without touching the worker. Misses run as tasks
    limited by a per-batch semaphore, and concurrent fetches of the same
    instance (within a batch or across batches) share one upstream request.
    Results are stored by position, so the output keeps the input order.
    """

    def __init__(
        self,
        worker: InstanceFetchWorker,
        cache: ResultCache,
        max_concurrency: int = 16,
        in_flight: InFlightTable[FetchResult] | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            worker: Instance fetch worker
            cache: Shared result cache
            max_concurrency: Maximum number of concurrent fetches per batch
            in_flight: Shared deduplication table for instance fetches
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._worker = worker
        self._cache = cache
        self.max_concurrency = max_concurrency
        self._in_flight = in_flight if in_flight is not None else InFlightTable("instance fetch")

    @property
    def in_flight(self) -> InFlightTable[FetchResult]:
        return self._in_flight

    def _from_cache(self, instance_id: str, count: bool = True) -> FetchResult | None:
        entry = self._cache.get(instance_id) if count else self._cache.peek(instance_id)
        if entry is None:
            return None
        return FetchResult.ok(instance_id, entry.payload, entry.content_type, cached=True)

    async def _fetch_and_store(self, instance_id: str) -> FetchResult:
        result = await self._worker.fetch(instance_id)
        if result.success and result.payload is not None:
            self._cache.put(instance_id, result.payload, result.content_type or "")
        return result

    async def _fetch_miss(self, instance_id: str) -> FetchResult:
        # Another batch may have filled the cache while this one was queued;
        # the miss is already counted.
        cached = self._from_cache(instance_id, count=False)
        if cached is not None:
            return cached
        return await self._in_flight.run(
            instance_id, lambda: self._fetch_and_store(instance_id)
        )

    async def fetch_instance(self, instance_id: str) -> FetchResult:
        """Fetch one instance through the cache and the deduplication table."""
        cached = self._from_cache(instance_id)
        if cached is not None:
            return cached
        return await self._fetch_miss(instance_id)

    def cached_batch(
        self, instance_ids: Sequence[str], reason: str, processing_time: float = 0.0
    ) -> BatchResult:
        """Answer a batch from the cache alone, reporting every miss as ``reason``."""
        results = [
            self._from_cache(iid) or FetchResult.failure(iid, reason) for iid in instance_ids
        ]
        return BatchResult(results=results, processing_time=processing_time)

    async def fetch_batch(
        self, instance_ids: Sequence[str], timeout: float | None = None
    ) -> BatchResult:
        """Fetch every instance in ``instance_ids``.

        Never raises because of individual instance failures. If ``timeout``
        expires, or the caller cancels, every pending fetch is cancelled and
        awaited before returning or re-raising.

        Args:
            instance_ids: Instance IDs in the order results should be returned
            timeout: Wall-clock limit for the whole batch in seconds

        Returns:
            BatchResult with one FetchResult per requested position
        """
        start = time.perf_counter()
        total = len(instance_ids)
        results: list[FetchResult | None] = [self._from_cache(i) for i in instance_ids]
        misses = [(index, iid) for index, iid in enumerate(instance_ids) if results[index] is None]

        if misses:
            logger.info(
                f"Fetching {len(misses)}/{total} instances from upstream "
                f"(concurrency {self.max_concurrency})"
            )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        completed = total - len(misses)

        async def fetch_one(index: int, instance_id: str) -> None:
            nonlocal completed
            async with semaphore:
                results[index] = await self._fetch_miss(instance_id)
            completed += 1
            if completed % PROGRESS_LOG_INTERVAL == 0 or completed == total:
                logger.info(
                    f"Progress: {completed}/{total} instances processed "
                    f"({completed / total * 100:.1f}%)"
                )

        tasks = [asyncio.create_task(fetch_one(index, iid)) for index, iid in misses]
        timed_out = False
        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=timeout)
                timed_out = bool(pending)
        finally:
            unfinished = [t for t in tasks if not t.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)
                logger.warning(f"Cancelled {len(unfinished)} unfinished fetches of batch")

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                logger.opt(exception=task.exception()).error("Fetch task failed")

        reason = f"Timed out after {timeout}s" if timed_out else "Fetch did not complete"
        final = [
            r if r is not None else FetchResult.failure(instance_ids[index], reason)
            for index, r in enumerate(results)
        ]

        batch = BatchResult(results=final, processing_time=time.perf_counter() - start)
        logger.info(
            f"Batch complete: {batch.success_count}/{batch.total_requested} succeeded, "
            f"{batch.cache_hits} from cache, in {batch.processing_time:.2f}s"
        )
        return batch
