import asyncio
import logging

import httpx

from shared_schemas.commands import TicketRequest
from shared_schemas.correlation import CorrelationToken
from video_uploader.cores.exceptions import TicketUnavailable

logger = logging.getLogger(__name__)


class UploadTicketClient:
    """Requests a one-time ingestion URL for a record from the video API"""

    def __init__(self, http: httpx.AsyncClient, max_attempts: int = 3, backoff_seconds: float = 0.5):
        self.http = http
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    async def _request_ticket(self, token: CorrelationToken) -> str:
        body = TicketRequest(record_id=token.record_id).model_dump(by_alias=True)
        response = await self.http.post("/upload-url", json=body)
        response.raise_for_status()
        url = response.json().get("url")
        if not url:
            raise ValueError("Ticket response carries no url")
        return url

    async def acquire_ticket(self, token: CorrelationToken) -> str:
        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                return await self._request_ticket(token)
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(
                    f"Ticket request for record {token.record_id} failed "
                    f"(attempt {attempt + 1}/{self.max_attempts}): {e}"
                )
            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.backoff_seconds * 2 ** attempt)
        raise TicketUnavailable(f"Failed to get upload URL: {last_error}") from last_error
