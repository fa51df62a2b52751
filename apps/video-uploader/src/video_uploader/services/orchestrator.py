from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any, Callable, Optional, Set

import httpx

from shared_schemas.base import UploadStatus
from shared_schemas.commands import CancelUploadRequest, StatusPatchRequest
from shared_schemas.correlation import CorrelationToken
from shared_schemas.records import ContentRecord
from video_uploader.cores.config import UploaderSettings
from video_uploader.cores.exceptions import TicketUnavailable, TransferError, ValidationError
from video_uploader.services.state import (
    FileSelected, Message, ProcessingResumed, RemoteStatusObserved, RemoteTerminalObserved,
    SelectionRejected, SessionStatus, TicketAcquired, TicketFailed, TransferFailed, TransferProgressed,
    TransferSucceeded, UploadCancelled, UploadRequested, UploadSession, ValidationStarted, reduce
)
from video_uploader.services.status_channel import StatusChannel, Subscription
from video_uploader.services.ticket_client import UploadTicketClient
from video_uploader.services.transfer import ChunkedTransfer
from video_uploader.utils.formatting import format_bytes

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str, Optional[ContentRecord]], Any]
RecordCallback = Callable[[str], Any]


class UploadOrchestrator:
    """Drives one record's upload from file selection to the provider's verdict.

    Use it as an async context manager (or call :meth:`aclose`) so the transfer
    and the status subscription are released whichever way the session ends.
    """

    def __init__(
            self,
            record_id: str,
            http: httpx.AsyncClient,
            settings: UploaderSettings,
            *,
            on_complete: Optional[CompletionCallback] = None,
            on_direct_upload_complete: Optional[RecordCallback] = None,
            on_change: Optional[Callable[[UploadSession], None]] = None,
            initial_status: Optional[UploadStatus] = None
    ):
        self.record_id = record_id
        self.http = http
        self.settings = settings
        self.on_complete = on_complete
        self.on_direct_upload_complete = on_direct_upload_complete
        self.on_change = on_change
        self.initial_status = initial_status
        self.ticket_client = UploadTicketClient(
            http,
            max_attempts=settings.TICKET_MAX_ATTEMPTS,
            backoff_seconds=settings.TICKET_BACKOFF_SECONDS
        )
        self.status_channel = StatusChannel(http, settings)
        self._session = UploadSession()
        self._transfer: Optional[ChunkedTransfer] = None
        self._subscription: Optional[Subscription] = None
        self._background: Set[asyncio.Task] = set()
        self._terminal = asyncio.Event()
        # Bumped whenever the session is replaced; in-flight results from an older one are dropped.
        self._generation = 0

    async def __aenter__(self) -> "UploadOrchestrator":
        if self.initial_status == UploadStatus.PROCESSING:
            self.resume_processing()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def session(self) -> UploadSession:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def should_confirm_leave(self) -> bool:
        """Leaving now would lose an in-flight transfer"""
        return self._session.status == SessionStatus.UPLOADING

    def dispatch(self, message: Message) -> UploadSession:
        previous = self._session
        self._session = reduce(previous, message)
        if self._session is not previous:
            if self._session.status != previous.status:
                logger.info(f"Record {self.record_id}: {previous.status.value} -> {self._session.status.value}")
            if self._session.status.is_terminal:
                self._terminal.set()
            else:
                self._terminal.clear()
            if self.on_change is not None:
                self.on_change(self._session)
        return self._session

    # -- selection -------------------------------------------------------

    def _validate(self, path: Path) -> tuple[int, str]:
        if not path.is_file():
            raise ValidationError(f"{path} is not a file")
        content_type, _ = mimetypes.guess_type(path.name)
        if not content_type or not content_type.startswith(self.settings.ALLOWED_MIME_PREFIX):
            raise ValidationError("Only video files are allowed")
        size = path.stat().st_size
        if size == 0:
            raise ValidationError("File is empty")
        if size > self.settings.MAX_FILE_SIZE_BYTES:
            raise ValidationError(f"File too large (max {format_bytes(self.settings.MAX_FILE_SIZE_BYTES)})")
        return size, content_type

    async def select_file(self, path: str | Path) -> None:
        path = Path(path)
        self.dispatch(ValidationStarted())
        try:
            size, content_type = self._validate(path)
        except ValidationError as e:
            self.dispatch(SelectionRejected(str(e)))
            raise
        self._generation += 1
        await self._release()
        self.dispatch(FileSelected(path=path, size=size, content_type=content_type))

    # -- upload ----------------------------------------------------------

    async def start_upload(self) -> SessionStatus:
        if self._session.status != SessionStatus.IDLE or self._session.file_path is None:
            logger.info(f"Ignoring start for record {self.record_id} in {self._session.status.value}")
            return self._session.status
        self.dispatch(UploadRequested())
        generation = self._generation
        try:
            endpoint = await self.ticket_client.acquire_ticket(CorrelationToken(self.record_id))
        except TicketUnavailable as e:
            if generation == self._generation:
                self.dispatch(TicketFailed(str(e)))
            return self._session.status
        if generation != self._generation:
            logger.info(f"Dropping upload ticket for record {self.record_id}; the session was replaced")
            return self._session.status
        if self.dispatch(TicketAcquired(at=time.monotonic())).status != SessionStatus.UPLOADING:
            # Cancelled while the ticket was being fetched.
            return self._session.status

        self._transfer = ChunkedTransfer(
            self.http,
            endpoint,
            self._session.file_path,
            content_type=self._session.content_type or "application/octet-stream",
            chunk_size=self.settings.CHUNK_SIZE_BYTES,
            max_attempts=self.settings.CHUNK_MAX_ATTEMPTS,
            retry_delay=self.settings.CHUNK_RETRY_DELAY_SECONDS,
            timeout=self.settings.CHUNK_TIMEOUT_SECONDS,
            on_progress=lambda percent: self.dispatch(TransferProgressed(percent=percent, at=time.monotonic()))
        )
        self._spawn(self._run_transfer(self._transfer))
        return self._session.status

    async def _run_transfer(self, transfer: ChunkedTransfer) -> None:
        try:
            await transfer.start()
        except asyncio.CancelledError:
            if not transfer.aborted:
                raise
            return
        except TransferError as e:
            logger.error(f"Transfer for record {self.record_id} failed: {e}")
            self.dispatch(TransferFailed(str(e) or "Upload failed"))
            return
        except OSError as e:
            logger.error(f"Could not read upload file for record {self.record_id}: {e}")
            self.dispatch(TransferFailed(str(e)))
            return
        if transfer.aborted:
            return
        self.dispatch(TransferSucceeded())
        if self._session.status != SessionStatus.PROCESSING:
            return
        self._spawn(self._report_processing())
        if self.on_direct_upload_complete is not None:
            self._fire(self.on_direct_upload_complete, self.record_id)
        self._subscribe()

    async def _report_processing(self) -> None:
        body = StatusPatchRequest(upload_status="processing").model_dump(by_alias=True)
        try:
            response = await self.http.patch(f"/records/{self.record_id}", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            # The asset webhook moves the record along anyway.
            logger.warning(f"Interim status report for record {self.record_id} failed: {e}")

    # -- processing ------------------------------------------------------

    def resume_processing(self) -> None:
        """Follow a record that was already processing when this orchestrator was created"""
        if self.dispatch(ProcessingResumed()).status == SessionStatus.PROCESSING:
            self._subscribe()

    def _subscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        self._subscription = self.status_channel.subscribe(
            self.record_id,
            on_update=lambda status: self.dispatch(RemoteStatusObserved(status)),
            on_terminal=self._on_terminal
        )

    def _on_terminal(self, status: UploadStatus, record: Optional[ContentRecord]) -> None:
        error = record.error_message if record is not None else None
        session = self.dispatch(RemoteTerminalObserved(status=status, error=error))
        if session.status == SessionStatus.COMPLETED and self.on_complete is not None:
            self._fire(self.on_complete, self.record_id, record)

    # -- cancellation and teardown ---------------------------------------

    async def cancel_upload(self) -> None:
        if self._session.status.is_terminal:
            return
        self._generation += 1
        if self._transfer is not None:
            self._transfer.abort()
        body = CancelUploadRequest(record_id=self.record_id).model_dump(by_alias=True)
        try:
            response = await self.http.post("/cancel-upload", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Cancel request for record {self.record_id} failed: {e}")
        await self._release()
        self.dispatch(UploadCancelled())

    async def wait(self) -> UploadSession:
        await self._terminal.wait()
        return self._session

    async def _release(self) -> None:
        if self._transfer is not None:
            self._transfer.abort()
            self._transfer = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            await self._subscription.wait()
            self._subscription = None

    async def aclose(self) -> None:
        await self._release()
        current = asyncio.current_task()
        pending = [task for task in self._background if task is not current]
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # -- helpers ---------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _fire(self, callback: Callable[..., Any], *args: Any) -> None:
        """Call a user callback; coroutine callbacks run in the background"""
        name = getattr(callback, "__name__", repr(callback))
        try:
            result = callback(*args)
        except Exception:
            logger.exception(f"Callback {name} failed for record {self.record_id}")
            return
        if inspect.isawaitable(result):
            self._spawn(self._await_callback(name, result))

    async def _await_callback(self, name: str, awaitable) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(f"Callback {name} failed for record {self.record_id}")
