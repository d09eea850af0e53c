"""Models for the batch fetch service."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class CacheStatus(str, Enum):
    """Cache outcome of a request, surfaced in the ``X-Cache-Status`` header."""

    HIT = "HIT"
    MISS = "MISS"
    PARTIAL = "PARTIAL"

    @classmethod
    def from_counts(cls, hits: int, total: int) -> CacheStatus:
        """Derive the status from how many of ``total`` lookups were served from cache."""
        if hits >= total:
            return cls.HIT
        if hits == 0:
            return cls.MISS
        return cls.PARTIAL


class Series(BaseModel):
    """A resolved series and its ordered instance IDs."""

    model_config = ConfigDict(frozen=True)

    id: str
    modality: str | None = None
    instances: list[str] = Field(default_factory=list)


class FetchResult(BaseModel):
    """Outcome of fetching one instance preview.

    Serialized with the field names the viewer front-end expects
    (``instanceId``, ``data``, ``contentType``); the payload is base64 encoded.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    instance_id: str = Field(alias="instanceId")
    success: bool
    payload: bytes | None = Field(default=None, alias="data", repr=False)
    content_type: str | None = Field(default=None, alias="contentType")
    error: str | None = None

    # Bookkeeping only, never serialized
    cached: bool = Field(default=False, exclude=True)
    auth_rejected: bool = Field(default=False, exclude=True)
    upstream_status: int | None = Field(default=None, exclude=True)

    @field_serializer("payload")
    def _encode_payload(self, payload: bytes | None) -> str | None:
        if payload is None:
            return None
        return base64.b64encode(payload).decode("ascii")

    @classmethod
    def ok(
        cls, instance_id: str, payload: bytes, content_type: str, cached: bool = False
    ) -> FetchResult:
        return cls(
            instance_id=instance_id,
            success=True,
            payload=payload,
            content_type=content_type,
            cached=cached,
        )

    @classmethod
    def failure(
        cls,
        instance_id: str,
        error: str,
        auth_rejected: bool = False,
        upstream_status: int | None = None,
    ) -> FetchResult:
        return cls(
            instance_id=instance_id,
            success=False,
            error=error,
            auth_rejected=auth_rejected,
            upstream_status=upstream_status,
        )

    def to_json(self) -> dict[str, object]:
        """Serialize to the wire format, omitting empty fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BatchResult(BaseModel):
    """Aggregate result of one batch fetch.

    Counts are derived from ``results`` so they always add up to the number
    of requested instances.
    """

    model_config = ConfigDict(frozen=True)

    results: list[FetchResult]
    processing_time: float = 0.0

    @property
    def total_requested(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return self.total_requested - self.success_count

    @property
    def cache_hits(self) -> int:
        return sum(1 for r in self.results if r.cached)

    @property
    def cache_status(self) -> CacheStatus:
        return CacheStatus.from_counts(self.cache_hits, self.total_requested)

    @property
    def auth_rejected(self) -> bool:
        return any(r.auth_rejected for r in self.results)


class StudyFetchResult(BaseModel):
    """Result of fetching every instance of a study."""

    model_config = ConfigDict(frozen=True)

    study_id: str
    series: list[Series]
    batch: BatchResult
    series_cached: bool = False

    @property
    def instance_ids(self) -> list[str]:
        return [instance_id for s in self.series for instance_id in s.instances]

    @property
    def cache_status(self) -> CacheStatus:
        """Status over the metadata lookup plus every instance lookup."""
        hits = self.batch.cache_hits + (1 if self.series_cached else 0)
        return CacheStatus.from_counts(hits, self.batch.total_requested + 1)


@dataclass(slots=True)
class CacheEntry:
    """Cached preview image for one instance."""

    key: str
    payload: bytes
    content_type: str
    inserted_at: float


# --- API request/response schemas ---


class FetchStudyRequest(BaseModel):
    """Body of ``POST /fetch-study``."""

    model_config = ConfigDict(populate_by_name=True)

    study_id: str = Field(alias="studyId", min_length=1)
    timeout: float | None = Field(default=None, gt=0)


class FetchInstancesRequest(BaseModel):
    """Body of ``POST /fetch-instances``."""

    model_config = ConfigDict(populate_by_name=True)

    instance_ids: list[str] = Field(alias="instanceIds", min_length=1)
    timeout: float | None = Field(default=None, gt=0)


class FetchResponse(BaseModel):
    """Aggregate response returned by the fetch endpoints."""

    study_id: str | None = None
    images: list[dict[str, object]]
    total_instances: int
    successful: int
    failed: int
    processing_time: float

    @classmethod
    def from_batch(cls, batch: BatchResult, study_id: str | None = None) -> FetchResponse:
        return cls(
            study_id=study_id,
            images=[r.to_json() for r in batch.results],
            total_instances=batch.total_requested,
            successful=batch.success_count,
            failed=batch.failure_count,
            processing_time=batch.processing_time,
        )
