"""Async HTTP client for the Orthanc REST API."""

from __future__ import annotations

from typing import Any

import httpx

from dicom_fetcher.exceptions import (
    InstanceFetchError,
    MetadataResolutionError,
    StudyNotFoundError,
    UpstreamAuthError,
)
from dicom_fetcher.utils.logger import logger

AUTH_STATUS_CODES = frozenset({401, 403})
DEFAULT_CONTENT_TYPE = "image/png"


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class OrthancClient:
    """Async HTTP client for an Orthanc PACS.

    One instance is shared by every request of the service, so the underlying
    connection pool is reused across batches.

    Args:
        base_url: Orthanc REST root (e.g. ``http://pacs:8042`` or ``https://host/orthanc``).
        token: Pre-encoded Basic auth token, sent as ``Authorization: Basic <token>``.
        username: Basic auth username, used when no token is given.
        password: Basic auth password, used when no token is given.
        timeout: Per-request timeout in seconds.
        max_connections: Upper bound on concurrent upstream connections.
        transport: Optional transport override (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        max_connections: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers: dict[str, str] = {}
        auth: httpx.Auth | None = None
        if token:
            headers["Authorization"] = f"Basic {token}"
        elif username and password:
            auth = httpx.BasicAuth(username, password)

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            auth=auth,
            timeout=timeout,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            transport=transport,
        )

    async def _get_json(self, path: str, what: str) -> Any:
        """GET a metadata resource and decode it.

        Raises:
            UpstreamAuthError: If Orthanc rejects the credentials.
            MetadataResolutionError: On network errors, non-2xx statuses or bad JSON.
        """
        try:
            response = await self._client.get(path)
        except httpx.TimeoutException as e:
            raise MetadataResolutionError(f"Timed out fetching {what}") from e
        except httpx.HTTPError as e:
            raise MetadataResolutionError(
                f"Cannot reach Orthanc at {self.base_url} for {what}: {e}"
            ) from e

        if response.status_code in AUTH_STATUS_CODES:
            logger.error(
                f"Orthanc rejected credentials fetching {what} (HTTP {response.status_code}) "
                "- check ORTHANC_TOKEN"
            )
            raise UpstreamAuthError(status_code=response.status_code)
        if response.status_code != 200:
            raise MetadataResolutionError(
                f"Failed to fetch {what}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MetadataResolutionError(f"Invalid JSON in {what}") from e

    async def get_study_series(self, study_id: str) -> list[dict[str, Any]]:
        """List the series of a study, each with its ``Instances`` when Orthanc expands them.

        Raises:
            StudyNotFoundError: If Orthanc does not know the study.
        """
        try:
            data = await self._get_json(
                f"/studies/{study_id}/series", f"series of study {study_id}"
            )
        except MetadataResolutionError as e:
            if e.status_code == 404:
                raise StudyNotFoundError(study_id) from e
            raise

        if not isinstance(data, list):
            raise MetadataResolutionError(f"Unexpected series payload for study {study_id}")
        return data

    async def get_series_instances(self, series_id: str) -> list[str]:
        """Get the ordered instance IDs of a series."""
        data = await self._get_json(f"/series/{series_id}", f"series {series_id}")
        instances = data.get("Instances") if isinstance(data, dict) else None
        if not isinstance(instances, list):
            raise MetadataResolutionError(f"Series {series_id} has no instance list")
        return [str(i) for i in instances]

    async def get_study_ohif_json(self, study_id: str) -> Any:
        """Get OHIF-formatted DICOM JSON metadata for a study."""
        try:
            return await self._get_json(
                f"/studies/{study_id}/ohif-dicom-json", f"OHIF metadata of study {study_id}"
            )
        except MetadataResolutionError as e:
            if e.status_code == 404:
                raise StudyNotFoundError(study_id) from e
            raise

    async def get_instance_preview(self, instance_id: str) -> tuple[bytes, str]:
        """Fetch the rendered preview image of an instance.

        Returns:
            Tuple of (image bytes, content type).

        Raises:
            UpstreamAuthError: If Orthanc rejects the credentials.
            InstanceFetchError: On timeouts, network errors, non-200 statuses or
                empty bodies. ``retryable`` is set for transient failures.
        """
        try:
            response = await self._client.get(f"/instances/{instance_id}/preview")
        except httpx.TimeoutException as e:
            raise InstanceFetchError(instance_id, "Request timed out", retryable=True) from e
        except httpx.HTTPError as e:
            raise InstanceFetchError(
                instance_id, f"Connection error: {e}", retryable=True
            ) from e

        if response.status_code in AUTH_STATUS_CODES:
            raise UpstreamAuthError(status_code=response.status_code)
        if response.status_code != 200:
            raise InstanceFetchError(
                instance_id,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                retryable=_is_transient(response.status_code),
            )
        if not response.content:
            raise InstanceFetchError(instance_id, "Empty image payload")

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return response.content, content_type

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> OrthancClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
