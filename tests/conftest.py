"""Shared fixtures: a fake Orthanc server behind ``httpx.MockTransport``."""

import asyncio
from collections import Counter
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dicom_fetcher.api.app import create_app
from dicom_fetcher.api.dependencies import get_fetch_service
from dicom_fetcher.services.fetch import (
    BatchFetchOrchestrator,
    FetchService,
    InstanceFetchWorker,
    ResultCache,
    StudyResolver,
)
from dicom_fetcher.services.orthanc import OrthancClient

ORTHANC_URL = "http://orthanc.test/orthanc"


def image_bytes(instance_id: str) -> bytes:
    """Deterministic fake PNG payload for an instance."""
    return b"\x89PNG" + instance_id.encode()


@dataclass
class FakeOrthanc:
    """In-memory Orthanc REST API.

    ``studies`` maps study ID to ``{series_id: [instance_ids]}``. Instance
    behaviour is tuned per ID with ``failures`` (status code to return),
    ``delays`` (seconds to sleep) and ``flaky`` (number of 503s before success).
    """

    studies: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    flaky: dict[str, int] = field(default_factory=dict)
    unreachable: set[str] = field(default_factory=set)
    expand_instances: bool = True
    metadata_status: int | None = None
    metadata_delay: float = 0.0
    reject_auth: bool = False
    calls: Counter[str] = field(default_factory=Counter)
    auth_headers: list[str | None] = field(default_factory=list)

    @property
    def preview_calls(self) -> int:
        return sum(n for path, n in self.calls.items() if path.endswith("/preview"))

    def series_calls(self, study_id: str) -> int:
        return self.calls[f"/orthanc/studies/{study_id}/series"]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        self.auth_headers.append(request.headers.get("Authorization"))

        if self.reject_auth:
            return httpx.Response(401, text="Unauthorized")

        parts = path.removeprefix("/orthanc/").split("/")

        if parts[0] == "studies" and len(parts) == 3 and parts[2] == "series":
            return await self._study_series(parts[1])
        if parts[0] == "studies" and len(parts) == 3 and parts[2] == "ohif-dicom-json":
            if parts[1] not in self.studies:
                return httpx.Response(404)
            return httpx.Response(200, json={"studies": [{"StudyInstanceUID": parts[1]}]})
        if parts[0] == "series" and len(parts) == 2:
            for series in self.studies.values():
                if parts[1] in series:
                    return httpx.Response(200, json={"ID": parts[1], "Instances": series[parts[1]]})
            return httpx.Response(404)
        if parts[0] == "instances" and len(parts) == 3 and parts[2] == "preview":
            return await self._preview(parts[1], request)
        return httpx.Response(404)

    async def _study_series(self, study_id: str) -> httpx.Response:
        if self.metadata_delay:
            await asyncio.sleep(self.metadata_delay)
        if self.metadata_status is not None:
            return httpx.Response(self.metadata_status)
        if study_id not in self.studies:
            return httpx.Response(404)
        payload = []
        for series_id, instances in self.studies[study_id].items():
            entry: dict[str, object] = {"ID": series_id, "MainDicomTags": {"Modality": "CT"}}
            if self.expand_instances:
                entry["Instances"] = instances
            payload.append(entry)
        return httpx.Response(200, json=payload)

    async def _preview(self, instance_id: str, request: httpx.Request) -> httpx.Response:
        if instance_id in self.delays:
            await asyncio.sleep(self.delays[instance_id])
        if instance_id in self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if self.flaky.get(instance_id, 0) > 0:
            self.flaky[instance_id] -= 1
            return httpx.Response(503)
        if instance_id in self.failures:
            return httpx.Response(self.failures[instance_id])
        return httpx.Response(
            200, content=image_bytes(instance_id), headers={"Content-Type": "image/png"}
        )


@pytest.fixture
def orthanc() -> FakeOrthanc:
    """Fake Orthanc with one two-series study."""
    return FakeOrthanc(
        studies={
            "study-1": {
                "series-a": ["a1", "a2", "a3"],
                "series-b": ["b1", "b2"],
            }
        }
    )


@pytest_asyncio.fixture
async def orthanc_client(orthanc: FakeOrthanc) -> AsyncGenerator[OrthancClient, None]:
    """OrthancClient wired to the fake server."""
    client = OrthancClient(
        ORTHANC_URL, token="dGVzdDp0ZXN0", timeout=5.0, transport=httpx.MockTransport(orthanc)
    )
    yield client
    await client.close()


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache(ttl_seconds=3600, max_size_bytes=1024**2, study_max_entries=16)


@pytest.fixture
def worker(orthanc_client: OrthancClient) -> InstanceFetchWorker:
    return InstanceFetchWorker(orthanc_client, retry_count=2, retry_delay=0.001, use_jitter=False)


@pytest.fixture
def orchestrator(worker: InstanceFetchWorker, cache: ResultCache) -> BatchFetchOrchestrator:
    return BatchFetchOrchestrator(worker, cache, max_concurrency=4)


@pytest.fixture
def service(
    orthanc_client: OrthancClient,
    cache: ResultCache,
    orchestrator: BatchFetchOrchestrator,
) -> FetchService:
    return FetchService(
        client=orthanc_client,
        cache=cache,
        orchestrator=orchestrator,
        resolver=StudyResolver(orthanc_client, cache),
        batch_timeout=10.0,
    )


@pytest_asyncio.fixture
async def api_client(service: FetchService) -> AsyncGenerator[AsyncClient, None]:
    """API client with the fetch service overridden (lifespan does not run)."""
    app = create_app()
    app.dependency_overrides[get_fetch_service] = lambda: service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
