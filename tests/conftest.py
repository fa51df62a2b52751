"""Shared fixtures: the API app on in-memory backends and a fake video API for the uploader."""

import asyncio
import json
from typing import Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from shared_provider.mux import MuxClient
from video_api.cores import injectable
from video_api.main import create_app
from video_api.services.record_store import MemoryRecordStore
from video_api.services.status_notifier import MemoryStatusNotifier
from video_uploader.cores.config import UploaderSettings


class FakeMux:
    """Answers the provider REST calls made by ``MuxClient``"""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.create_status = 201
        self.cancel_status = 200
        self._uploads = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/video/v1/uploads":
            if self.create_status >= 400:
                return httpx.Response(self.create_status, json={"error": {"type": "server_error"}})
            self._uploads += 1
            upload_id = f"upload-{self._uploads}"
            return httpx.Response(self.create_status, json={"data": {
                "id": upload_id,
                "url": f"https://storage.test/{upload_id}",
                "status": "waiting",
            }})
        if request.method == "PUT" and request.url.path.endswith("/cancel"):
            if self.cancel_status >= 400:
                return httpx.Response(self.cancel_status)
            return httpx.Response(self.cancel_status, json={"data": {"status": "cancelled"}})
        return httpx.Response(404)

    def bodies(self, method: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == method and r.content]


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def notifier():
    return MemoryStatusNotifier()


@pytest.fixture
def mux():
    return FakeMux()


@pytest.fixture
async def provider(mux):
    client = MuxClient("token-id", "token-secret", transport=httpx.MockTransport(mux.handler))
    yield client
    await client.close()


@pytest.fixture
def app(store, notifier, provider):
    application = create_app()
    application.dependency_overrides[injectable.get_record_store] = lambda: store
    application.dependency_overrides[injectable.get_notifier] = lambda: notifier
    application.dependency_overrides[injectable.get_provider] = lambda: provider
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test/api") as ac:
        yield ac


def sse_body(*events) -> str:
    chunks = []
    for event, data in events:
        payload = data if isinstance(data, str) else json.dumps(data)
        chunks.append(f"event: {event}\ndata: {payload}\n\n")
    return "".join(chunks)


def sse_response(*events) -> httpx.Response:
    return httpx.Response(200, text=sse_body(*events), headers={"content-type": "text/event-stream"})


class FakeVideoApi:
    """Plays the video API and the provider ingestion URL for uploader tests"""

    def __init__(self, record_id: str = "r1", final_status: str = "COMPLETED"):
        self.record_id = record_id
        self.final_status = final_status
        self.calls: list[tuple[str, str]] = []
        self.bodies: dict[str, dict] = {}
        self.chunks: list[httpx.Request] = []
        self.ticket_status = 200
        self.chunk_status = 200
        self.stream_status = 200
        self.chunk_gate: Optional[asyncio.Event] = None
        self.chunk_started = asyncio.Event()
        self.ticket_gate: Optional[asyncio.Event] = None
        self.ticket_started = asyncio.Event()
        self.tickets = 0

    def record(self, status: str, **extra) -> dict:
        return {"id": self.record_id, "uploadStatus": status, **extra}

    def final_record(self) -> dict:
        if self.final_status == "COMPLETED":
            return self.record("COMPLETED", externalAssetId="asset-1", externalPlaybackId="play-1")
        if self.final_status == "FAILED":
            return self.record("FAILED", errorMessage="Input has no video track")
        return self.record(self.final_status)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if request.url.host == "storage.test":
            self.chunks.append(request)
            self.chunk_started.set()
            if self.chunk_gate is not None:
                await self.chunk_gate.wait()
            return httpx.Response(self.chunk_status)

        path = request.url.path
        record_path = f"/api/records/{self.record_id}"
        if path == "/api/upload-url":
            self.bodies["upload-url"] = json.loads(request.content)
            self.ticket_started.set()
            if self.ticket_gate is not None:
                await self.ticket_gate.wait()
            if self.ticket_status != 200:
                return httpx.Response(self.ticket_status)
            self.tickets += 1
            upload_id = f"upload-{self.tickets}"
            return httpx.Response(200, json={"url": f"https://storage.test/{upload_id}", "id": upload_id})
        if path == "/api/cancel-upload":
            self.bodies["cancel-upload"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        if path == record_path and request.method == "PATCH":
            self.bodies["patch"] = json.loads(request.content)
            return httpx.Response(200, json=self.record("PROCESSING"))
        if path == record_path and request.method == "GET":
            return httpx.Response(200, json=self.final_record())
        if path == f"{record_path}/events":
            if self.stream_status != 200:
                return httpx.Response(self.stream_status)
            final = self.final_record()
            return sse_response(
                ("update", {"status": "PROCESSING", "record": self.record("PROCESSING")}),
                ("update", {"status": final["uploadStatus"], "record": final}),
                ("close", "Stream closed"),
            )
        return httpx.Response(404)


@pytest.fixture
def uploader_settings():
    return UploaderSettings(
        API_BASE_URL="http://api.test/api",
        TICKET_BACKOFF_SECONDS=0,
        CHUNK_SIZE_BYTES=256 * 1024,
        CHUNK_RETRY_DELAY_SECONDS=0,
        STREAM_BACKOFF_BASE_SECONDS=0,
        POLL_INITIAL_DELAY_SECONDS=0,
        POLL_MAX_DELAY_SECONDS=0,
    )


@pytest.fixture
def video_api():
    return FakeVideoApi()


@pytest.fixture
async def api_http(video_api):
    async with httpx.AsyncClient(transport=httpx.MockTransport(video_api.handler), base_url="http://api.test/api") as http:
        yield http
