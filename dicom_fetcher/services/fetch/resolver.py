"""Resolution of a study to its series and instance IDs."""

from __future__ import annotations

import asyncio
from typing import Any

from dicom_fetcher.exceptions import MetadataResolutionError
from dicom_fetcher.services.fetch.cache import ResultCache
from dicom_fetcher.services.fetch.models import Series
from dicom_fetcher.services.orthanc.client import OrthancClient
from dicom_fetcher.utils.logger import logger


class StudyResolver:
    """Resolves a study ID to its ordered series, using the metadata cache."""

    def __init__(self, client: OrthancClient, cache: ResultCache):
        self._client = client
        self._cache = cache

    async def _series_from_entry(self, entry: dict[str, Any]) -> Series:
        if not isinstance(entry, dict):
            raise MetadataResolutionError(f"Unexpected series entry: {entry!r}")
        series_id = entry.get("ID")
        if not series_id:
            raise MetadataResolutionError("Series entry without an ID")

        instances = entry.get("Instances")
        if not isinstance(instances, list):
            # Orthanc only expands instances on some endpoints
            instances = await self._client.get_series_instances(series_id)

        tags = entry.get("MainDicomTags") or {}
        return Series(
            id=str(series_id),
            modality=tags.get("Modality"),
            instances=[str(i) for i in instances],
        )

    async def resolve(self, study_id: str) -> tuple[list[Series], bool]:
        """Resolve a study to its series.

        Args:
            study_id: Orthanc study ID

        Returns:
            Tuple of (ordered series list, served_from_cache)

        Raises:
            StudyNotFoundError: If the study does not exist upstream
            UpstreamAuthError: If Orthanc rejects the credentials
            MetadataResolutionError: If the metadata cannot be fetched or parsed
        """
        cached = self._cache.get_study(study_id)
        if cached is not None:
            logger.debug(f"Metadata cache hit for study {study_id}")
            return cached, True

        entries = await self._client.get_study_series(study_id)
        series = list(await asyncio.gather(*(self._series_from_entry(e) for e in entries)))

        instance_count = sum(len(s.instances) for s in series)
        logger.info(
            f"Found {instance_count} instances in {len(series)} series for study {study_id}"
        )

        self._cache.put_study(study_id, series)
        return series, False
