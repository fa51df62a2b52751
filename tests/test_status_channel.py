import asyncio

import httpx
import pytest

from conftest import sse_response
from shared_schemas.base import UploadStatus
from video_uploader.services.status_channel import StatusChannel, iter_sse


class Recorder:
    def __init__(self):
        self.updates = []
        self.terminals = []

    def on_update(self, status):
        self.updates.append(status)

    def on_terminal(self, status, record):
        self.terminals.append((status, record))


def _record(status, **extra):
    return {"id": "r1", "uploadStatus": status, **extra}


async def _follow(handler, settings, timeout=5):
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test/api") as http:
        subscription = StatusChannel(http, settings).subscribe("r1", recorder.on_update, recorder.on_terminal)
        await asyncio.wait_for(subscription.wait(), timeout)
        assert not subscription.active
    return recorder


async def test_stream_delivers_updates_until_terminal(uploader_settings):
    requests = []

    def handler(request):
        requests.append(request.url.path)
        return sse_response(
            ("update", {"status": "PROCESSING", "record": _record("PROCESSING")}),
            ("update", {"status": "COMPLETED", "record": _record("COMPLETED", externalPlaybackId="play-1")}),
            ("close", "Stream closed"),
        )

    recorder = await _follow(handler, uploader_settings)

    assert recorder.updates == [UploadStatus.PROCESSING, UploadStatus.COMPLETED]
    assert len(recorder.terminals) == 1
    status, record = recorder.terminals[0]
    assert status == UploadStatus.COMPLETED
    assert record.external_playback_id == "play-1"
    assert requests == ["/api/records/r1/events"]


async def test_failing_stream_falls_back_to_polling(uploader_settings):
    calls = {"stream": 0, "poll": 0}

    def handler(request):
        if request.url.path.endswith("/events"):
            calls["stream"] += 1
            return httpx.Response(503)
        calls["poll"] += 1
        if calls["poll"] == 1:
            return httpx.Response(500)
        status = "PROCESSING" if calls["poll"] == 2 else "FAILED"
        return httpx.Response(200, json=_record(status, errorMessage="Input has no video track"))

    recorder = await _follow(handler, uploader_settings)

    assert calls["stream"] == uploader_settings.STREAM_MAX_RETRIES
    assert calls["poll"] == 3
    assert recorder.updates == [UploadStatus.PROCESSING, UploadStatus.FAILED]
    assert [status for status, _ in recorder.terminals] == [UploadStatus.FAILED]
    assert recorder.terminals[0][1].error_message == "Input has no video track"


async def test_stream_ending_early_counts_as_a_failure(uploader_settings):
    calls = {"stream": 0}

    def handler(request):
        if request.url.path.endswith("/events"):
            calls["stream"] += 1
            if calls["stream"] == 1:
                return sse_response(("update", {"status": "PROCESSING", "record": _record("PROCESSING")}))
            return sse_response(("update", {"status": "CANCELLED", "record": _record("CANCELLED")}))
        return httpx.Response(404)

    recorder = await _follow(handler, uploader_settings)

    assert calls["stream"] == 2
    assert recorder.terminals[0][0] == UploadStatus.CANCELLED


async def test_unsubscribe_stops_the_channel(uploader_settings):
    def handler(request):
        return httpx.Response(200, json=_record("PROCESSING"))

    settings = uploader_settings.model_copy(update={"STREAM_MAX_RETRIES": 0, "POLL_INITIAL_DELAY_SECONDS": 0.01,
                                                    "POLL_MAX_DELAY_SECONDS": 0.01})
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test/api") as http:
        subscription = StatusChannel(http, settings).subscribe("r1", recorder.on_update, recorder.on_terminal)
        await asyncio.sleep(0.05)
        subscription.unsubscribe()
        await subscription.wait()

    assert not subscription.active
    assert recorder.terminals == []
    assert UploadStatus.PROCESSING in recorder.updates


async def _lines(*lines):
    for line in lines:
        yield line


@pytest.mark.parametrize("lines,expected", [
    (["event: update", "data: {}", ""], [("update", "{}")]),
    (["data: a", "data: b", ""], [("message", "a\nb")]),
    ([": ping", "", "event: close", "data:done"], [("close", "done")]),
])
async def test_iter_sse(lines, expected):
    assert [pair async for pair in iter_sse(_lines(*lines))] == expected


def test_reconnect_delay_doubles_from_the_first_failure(uploader_settings):
    settings = uploader_settings.model_copy(update={"STREAM_BACKOFF_BASE_SECONDS": 1.0,
                                                    "STREAM_BACKOFF_CAP_SECONDS": 30.0})
    channel = StatusChannel(httpx.AsyncClient(), settings)

    assert [channel.reconnect_delay(n) for n in (1, 2, 3, 4, 5, 6)] == [2, 4, 8, 16, 30, 30]
