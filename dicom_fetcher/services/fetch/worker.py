"""Single-instance preview fetch with retry."""

from __future__ import annotations

import asyncio
import random

from dicom_fetcher.exceptions import InstanceFetchError, UpstreamAuthError
from dicom_fetcher.services.fetch.models import FetchResult
from dicom_fetcher.services.orthanc.client import OrthancClient
from dicom_fetcher.utils.logger import logger


class InstanceFetchWorker:
    """Fetches one instance preview and always returns a ``FetchResult``.

    Transient failures (timeouts, connection errors, HTTP 429/5xx) are retried
    with exponential backoff; everything else fails immediately. No exception
    escapes ``fetch``.

    Args:
        client: Shared Orthanc client; its timeout bounds every attempt.
        retry_count: Extra attempts after the first one.
        retry_delay: Base backoff delay in seconds.
        max_delay: Upper bound on a single backoff delay.
        use_jitter: Randomize delays to spread retries of a large batch.
    """

    def __init__(
        self,
        client: OrthancClient,
        retry_count: int = 2,
        retry_delay: float = 0.5,
        max_delay: float = 5.0,
        use_jitter: bool = True,
    ) -> None:
        self._client = client
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.max_delay = max_delay
        self.use_jitter = use_jitter

    def _backoff(self, attempt: int) -> float:
        delay = min(self.retry_delay * 2**attempt, self.max_delay)
        if self.use_jitter:
            delay = random.uniform(0, delay)
        return delay

    async def fetch(self, instance_id: str) -> FetchResult:
        """Fetch the preview image of one instance.

        Args:
            instance_id: Orthanc instance ID

        Returns:
            Successful FetchResult with the payload, or a failed one with the reason
        """
        attempt = 0
        while True:
            try:
                payload, content_type = await self._client.get_instance_preview(instance_id)
            except UpstreamAuthError as e:
                logger.error(
                    f"Orthanc rejected credentials for instance {instance_id} "
                    f"(HTTP {e.status_code}) - check ORTHANC_TOKEN"
                )
                return FetchResult.failure(
                    instance_id, str(e), auth_rejected=True, upstream_status=e.status_code
                )
            except InstanceFetchError as e:
                if e.retryable and attempt < self.retry_count:
                    delay = self._backoff(attempt)
                    attempt += 1
                    logger.debug(
                        f"Retrying instance {instance_id} in {delay:.2f}s "
                        f"(attempt {attempt}/{self.retry_count}): {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.warning(f"Failed to fetch instance {instance_id}: {e}")
                return FetchResult.failure(instance_id, str(e), upstream_status=e.status_code)
            except Exception as e:
                logger.exception(f"Unexpected error fetching instance {instance_id}")
                return FetchResult.failure(instance_id, f"Unexpected error: {e}")

            return FetchResult.ok(instance_id, payload, content_type)
