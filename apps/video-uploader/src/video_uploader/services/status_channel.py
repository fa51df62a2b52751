"""Follows a record's persisted upload status until it becomes terminal.

The server-sent event stream is preferred. When it keeps failing the channel
switches to polling the record snapshot with a growing delay. Both transports
run one after the other inside a single task, so they are never open at the
same time and the terminal callback fires once.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import AsyncIterator, Callable, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared_schemas.base import UploadStatus
from shared_schemas.records import ContentRecord
from video_uploader.cores.config import UploaderSettings
from video_uploader.cores.exceptions import StreamError

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[UploadStatus], None]
TerminalCallback = Callable[[UploadStatus, Optional[ContentRecord]], None]


class _TerminalReached(Exception):
    pass


class Subscription:
    def __init__(self, record_id: str, task: asyncio.Task):
        self.record_id = record_id
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def unsubscribe(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, str]]:
    """Yield ``(event, data)`` pairs from the lines of a text/event-stream body"""
    event = "message"
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


def _parse_message(raw: str) -> Tuple[Optional[UploadStatus], Optional[ContentRecord]]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        return None, None
    status = UploadStatus.parse(parsed.get("status"))
    record = None
    if isinstance(parsed.get("record"), dict):
        record = ContentRecord.model_validate(parsed["record"])
    return status, record


class StatusChannel:
    def __init__(self, http: httpx.AsyncClient, settings: UploaderSettings):
        self.http = http
        self.settings = settings

    def subscribe(self, record_id: str, on_update: UpdateCallback, on_terminal: TerminalCallback) -> Subscription:
        task = asyncio.create_task(self._run(record_id, on_update, on_terminal), name=f"status:{record_id}")
        return Subscription(record_id, task)

    def reconnect_delay(self, failures: int) -> float:
        # failures counts streams already lost, so the first reconnect waits base * 2.
        return min(self.settings.STREAM_BACKOFF_BASE_SECONDS * 2 ** failures, self.settings.STREAM_BACKOFF_CAP_SECONDS)

    async def _run(self, record_id: str, on_update: UpdateCallback, on_terminal: TerminalCallback) -> None:
        def observe(status: Optional[UploadStatus], record: Optional[ContentRecord]) -> None:
            if status is None:
                return
            on_update(status)
            if status.is_terminal:
                on_terminal(status, record)
                raise _TerminalReached()

        retries = 0
        try:
            while True:
                try:
                    await self._follow_stream(record_id, observe)
                except StreamError as e:
                    logger.info(f"Status stream for record {record_id} failed: {e}")
                retries += 1
                if retries >= self.settings.STREAM_MAX_RETRIES:
                    break
                await asyncio.sleep(self.reconnect_delay(retries))
            logger.warning(f"Status stream for record {record_id} unavailable; falling back to polling")
            await self._poll(record_id, observe)
        except _TerminalReached:
            logger.info(f"Record {record_id} reached a terminal status")

    async def _follow_stream(self, record_id: str, observe) -> None:
        timeout = httpx.Timeout(self.settings.REQUEST_TIMEOUT_SECONDS, read=None)
        try:
            async with self.http.stream("GET", f"/records/{record_id}/events", timeout=timeout) as response:
                if response.status_code != 200:
                    raise StreamError(f"Stream responded with {response.status_code}")
                async for event, data in iter_sse(response.aiter_lines()):
                    if event == "close":
                        break
                    if event not in ("message", "update"):
                        continue
                    try:
                        status, record = _parse_message(data)
                    except (ValueError, PydanticValidationError) as e:
                        logger.error(f"Unparsable status message for record {record_id}: {e}")
                        continue
                    observe(status, record)
        except httpx.HTTPError as e:
            raise StreamError(str(e)) from e
        raise StreamError("Stream ended before a terminal status")

    async def _poll(self, record_id: str, observe) -> None:
        delay = self.settings.POLL_INITIAL_DELAY_SECONDS
        while True:
            await asyncio.sleep(delay)
            try:
                response = await self.http.get(f"/records/{record_id}")
                response.raise_for_status()
                record = ContentRecord.model_validate(response.json())
            except (httpx.HTTPError, ValueError, PydanticValidationError) as e:
                logger.error(f"Processing poll for record {record_id} failed: {e}")
            else:
                observe(record.upload_status, record)
            delay = min(delay * self.settings.POLL_BACKOFF_FACTOR, self.settings.POLL_MAX_DELAY_SECONDS)
