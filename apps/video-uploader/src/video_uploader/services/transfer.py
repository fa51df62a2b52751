"""Resumable chunked PUT of a local file to a provider ingestion URL.

Each chunk is sent with a ``Content-Range`` header; the provider answers
``308`` while it expects more bytes and a 2xx once the object is complete.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

import httpx

from video_uploader.cores.exceptions import TransferError

logger = logging.getLogger(__name__)

CHUNK_ALIGNMENT = 256 * 1024
RESUME_INCOMPLETE = 308
RETRYABLE_STATUSES = frozenset({408, 502, 503, 504})


class ChunkedTransfer:
    def __init__(
            self,
            http: httpx.AsyncClient,
            endpoint: str,
            path: Path,
            *,
            content_type: str = "application/octet-stream",
            chunk_size: int = 30 * 1024 * 1024,
            max_attempts: int = 5,
            retry_delay: float = 1.0,
            timeout: float = 300.0,
            on_progress: Optional[Callable[[float], None]] = None
    ):
        if chunk_size <= 0 or chunk_size % CHUNK_ALIGNMENT:
            raise ValueError(f"chunk_size must be a positive multiple of {CHUNK_ALIGNMENT} bytes")
        self.http = http
        self.endpoint = endpoint
        self.path = Path(path)
        self.content_type = content_type
        self.chunk_size = chunk_size
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.on_progress = on_progress
        self.offset = 0
        self._aborted = False
        self._task: Optional[asyncio.Task] = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name=f"transfer:{self.path.name}")
        return self._task

    def abort(self) -> None:
        self._aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self) -> None:
        total = self.path.stat().st_size
        with self.path.open("rb") as handle:
            while self.offset < total and not self._aborted:
                chunk = await asyncio.to_thread(handle.read, self.chunk_size)
                if not chunk:
                    raise TransferError(f"{self.path.name} shrank while uploading")
                await self._send_chunk(chunk, total)
                self.offset += len(chunk)
                if not self._aborted and self.on_progress is not None:
                    self.on_progress(self.offset / total * 100)
        logger.info(f"Transferred {self.offset}/{total} bytes of {self.path.name}")

    async def _send_chunk(self, chunk: bytes, total: int) -> None:
        end = self.offset + len(chunk) - 1
        headers = {
            "Content-Type": self.content_type,
            "Content-Range": f"bytes {self.offset}-{end}/{total}",
        }
        last_problem = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.http.put(self.endpoint, content=chunk, headers=headers, timeout=self.timeout)
            except httpx.TransportError as e:
                last_problem = f"{type(e).__name__}: {e}"
            else:
                if response.is_success or response.status_code == RESUME_INCOMPLETE:
                    return
                last_problem = f"Server responded with {response.status_code}: {response.text[:200]}"
                if response.status_code not in RETRYABLE_STATUSES:
                    raise TransferError(last_problem)
            logger.warning(
                f"Chunk {self.offset}-{end} of {self.path.name} failed "
                f"(attempt {attempt}/{self.max_attempts}): {last_problem}"
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)
        raise TransferError(f"Upload failed after {self.max_attempts} attempts: {last_problem}")
