import json

import httpx
import pytest

from shared_schemas.correlation import CorrelationToken
from video_uploader.cores.exceptions import TicketUnavailable
from video_uploader.services.ticket_client import UploadTicketClient


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test/api")


async def test_ticket_is_returned():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"url": "https://storage.test/upload-1", "id": "upload-1"})

    async with _client(handler) as http:
        url = await UploadTicketClient(http).acquire_ticket(CorrelationToken("r1"))

    assert url == "https://storage.test/upload-1"
    assert requests[0].url.path == "/api/upload-url"
    assert json.loads(requests[0].content) == {"recordId": "r1"}


async def test_transient_failure_is_retried():
    responses = iter([httpx.Response(503), httpx.Response(200, json={"url": "https://storage.test/u"})])

    async with _client(lambda request: next(responses)) as http:
        url = await UploadTicketClient(http, backoff_seconds=0).acquire_ticket(CorrelationToken("r1"))

    assert url == "https://storage.test/u"


async def test_exhausted_retries_raise_ticket_unavailable():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(500)

    async with _client(handler) as http:
        with pytest.raises(TicketUnavailable, match="Failed to get upload URL"):
            await UploadTicketClient(http, max_attempts=3, backoff_seconds=0).acquire_ticket(CorrelationToken("r1"))

    assert len(attempts) == 3


async def test_response_without_url_counts_as_failure():
    async with _client(lambda request: httpx.Response(200, json={"id": "upload-1"})) as http:
        with pytest.raises(TicketUnavailable):
            await UploadTicketClient(http, max_attempts=2, backoff_seconds=0).acquire_ticket(CorrelationToken("r1"))


async def test_unreachable_api_raises_ticket_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler) as http:
        with pytest.raises(TicketUnavailable):
            await UploadTicketClient(http, max_attempts=2, backoff_seconds=0).acquire_ticket(CorrelationToken("r1"))
