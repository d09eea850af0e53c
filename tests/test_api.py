"""HTTP-level tests for the fetch, proxy and cache endpoints."""

import base64

import pytest
from httpx import AsyncClient

from tests.conftest import FakeOrthanc, image_bytes


def b64(payload: bytes) -> str:
    return base64.b64encode(payload).decode()


class TestFetchInstancesEndpoint:
    """POST /fetch-instances"""

    @pytest.mark.asyncio
    async def test_failed_instance_reported_in_place(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        orthanc.unreachable.add("b")

        response = await api_client.post("/fetch-instances", json={"instanceIds": ["a", "b", "c"]})

        assert response.status_code == 200
        assert response.headers["X-Cache-Status"] == "MISS"
        body = response.json()
        assert body["total_instances"] == 3
        assert body["successful"] == 2
        assert body["failed"] == 1
        assert "study_id" not in body

        images = body["images"]
        assert [img["instanceId"] for img in images] == ["a", "b", "c"]
        assert images[0] == {
            "instanceId": "a",
            "success": True,
            "data": b64(image_bytes("a")),
            "contentType": "image/png",
        }
        assert images[1]["success"] is False
        assert "Connection error" in images[1]["error"]
        assert "data" not in images[1]

    @pytest.mark.asyncio
    async def test_partial_upstream_failures_still_200(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        ids = [f"i{n}" for n in range(10)]
        for iid in ("i0", "i4", "i9"):
            orthanc.failures[iid] = 404

        response = await api_client.post("/fetch-instances", json={"instanceIds": ids})

        assert response.status_code == 200
        body = response.json()
        assert (body["successful"], body["failed"]) == (7, 3)

    @pytest.mark.asyncio
    async def test_cache_status_header_progresses(self, api_client: AsyncClient) -> None:
        first = await api_client.post("/fetch-instances", json={"instanceIds": ["a1"]})
        mixed = await api_client.post("/fetch-instances", json={"instanceIds": ["a1", "a2"]})
        full = await api_client.post("/fetch-instances", json={"instanceIds": ["a2", "a1"]})

        assert first.headers["X-Cache-Status"] == "MISS"
        assert mixed.headers["X-Cache-Status"] == "PARTIAL"
        assert full.headers["X-Cache-Status"] == "HIT"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"instanceIds": []},
            {"instanceIds": "a1"},
            {"instanceIds": ["a1"], "timeout": -1},
            {"instanceIds": ["a1", " "]},
        ],
    )
    async def test_malformed_request(self, api_client: AsyncClient, payload: dict) -> None:
        response = await api_client.post("/fetch-instances", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/fetch-instances",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rejected_credentials_is_bad_gateway(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        orthanc.reject_auth = True

        response = await api_client.post("/fetch-instances", json={"instanceIds": ["a1"]})

        assert response.status_code == 502


class TestFetchStudyEndpoint:
    """POST /fetch-study"""

    @pytest.mark.asyncio
    async def test_fetch_study(self, api_client: AsyncClient) -> None:
        response = await api_client.post("/fetch-study", json={"studyId": "study-1"})

        assert response.status_code == 200
        assert response.headers["X-Cache-Status"] == "MISS"
        body = response.json()
        assert body["study_id"] == "study-1"
        assert body["total_instances"] == 5
        assert body["successful"] == 5
        assert body["failed"] == 0
        assert body["processing_time"] >= 0
        assert [img["instanceId"] for img in body["images"]] == ["a1", "a2", "a3", "b1", "b2"]

    @pytest.mark.asyncio
    async def test_repeat_is_hit(self, api_client: AsyncClient, orthanc: FakeOrthanc) -> None:
        await api_client.post("/fetch-study", json={"studyId": "study-1"})
        response = await api_client.post("/fetch-study", json={"studyId": "study-1"})

        assert response.headers["X-Cache-Status"] == "HIT"
        assert orthanc.preview_calls == 5

    @pytest.mark.asyncio
    async def test_instances_cached_by_other_request_make_partial(
        self, api_client: AsyncClient
    ) -> None:
        await api_client.post("/fetch-instances", json={"instanceIds": ["a1", "a2"]})

        response = await api_client.post("/fetch-study", json={"studyId": "study-1"})

        assert response.headers["X-Cache-Status"] == "PARTIAL"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"studyId": ""}, {"studyId": "  "}, {"studyId": 5}])
    async def test_malformed_request(self, api_client: AsyncClient, payload: dict) -> None:
        response = await api_client.post("/fetch-study", json=payload)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_study(self, api_client: AsyncClient) -> None:
        response = await api_client.post("/fetch-study", json={"studyId": "missing"})

        assert response.status_code == 404
        assert "missing" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_metadata_failure_is_bad_gateway(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        orthanc.metadata_status = 500

        response = await api_client.post("/fetch-study", json={"studyId": "study-1"})

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_rejected_credentials_is_bad_gateway(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        orthanc.reject_auth = True

        response = await api_client.post("/fetch-study", json={"studyId": "study-1"})

        assert response.status_code == 502


class TestProxyEndpoints:
    @pytest.mark.asyncio
    async def test_preview(self, api_client: AsyncClient) -> None:
        first = await api_client.get("/instances/a1/preview")
        second = await api_client.get("/instances/a1/preview")

        assert first.status_code == 200
        assert first.content == image_bytes("a1")
        assert first.headers["Content-Type"] == "image/png"
        assert first.headers["Cache-Control"] == "public, max-age=3600"
        assert first.headers["X-Cache-Status"] == "MISS"
        assert second.headers["X-Cache-Status"] == "HIT"

    @pytest.mark.asyncio
    async def test_preview_not_found(self, api_client: AsyncClient, orthanc: FakeOrthanc) -> None:
        orthanc.failures["a1"] = 404

        response = await api_client.get("/instances/a1/preview")

        assert response.status_code == 404
        assert response.json()["detail"].startswith("Failed to fetch image")

    @pytest.mark.asyncio
    async def test_preview_upstream_error(
        self, api_client: AsyncClient, orthanc: FakeOrthanc
    ) -> None:
        orthanc.unreachable.add("a1")

        response = await api_client.get("/instances/a1/preview")

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_study_series(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/studies/study-1/series")

        assert response.status_code == 200
        body = response.json()
        assert body["totalSeries"] == 2
        assert body["series"][0] == {
            "id": "series-a",
            "modality": "CT",
            "instances": ["a1", "a2", "a3"],
        }

    @pytest.mark.asyncio
    async def test_study_metadata(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/studies/study-1/metadata")

        assert response.status_code == 200
        assert response.json()["studies"][0]["StudyInstanceUID"] == "study-1"

        missing = await api_client.get("/studies/missing/metadata")
        assert missing.status_code == 404


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_cache_stats_and_clear(self, api_client: AsyncClient) -> None:
        await api_client.post("/fetch-instances", json={"instanceIds": ["a1", "a2"]})

        stats = (await api_client.get("/cache-stats")).json()
        assert stats["instance_entries"] == 2
        assert stats["in_flight_studies"] == 0

        response = await api_client.post("/clear-cache")
        assert response.json() == {"status": "cache cleared"}

        stats = (await api_client.get("/cache-stats")).json()
        assert stats["instance_entries"] == 0
