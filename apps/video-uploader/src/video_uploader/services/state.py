"""Client upload session state and its transition function.

The orchestrator keeps exactly one :class:`UploadSession` and only ever
replaces it with ``reduce(session, message)``. Messages that are not valid for
the current state leave the session untouched, which is how late progress
events after a cancellation are dropped.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from shared_schemas.base import UploadStatus


class SessionStatus(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    PREPARING = "PREPARING"
    UPLOADING = "UPLOADING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.ERROR)


@dataclass(frozen=True)
class UploadSession:
    status: SessionStatus = SessionStatus.IDLE
    file_path: Optional[Path] = None
    content_type: Optional[str] = None
    selected_file_size: Optional[int] = None
    progress_percent: float = 0.0
    eta_seconds: Optional[int] = None
    error: Optional[str] = None
    processing_status: Optional[UploadStatus] = None
    started_at: Optional[float] = None


@dataclass(frozen=True)
class ValidationStarted:
    pass


@dataclass(frozen=True)
class SelectionRejected:
    error: str


@dataclass(frozen=True)
class FileSelected:
    path: Path
    size: int
    content_type: str


@dataclass(frozen=True)
class UploadRequested:
    pass


@dataclass(frozen=True)
class TicketAcquired:
    at: float


@dataclass(frozen=True)
class TicketFailed:
    error: str


@dataclass(frozen=True)
class TransferProgressed:
    percent: float
    at: float


@dataclass(frozen=True)
class TransferSucceeded:
    pass


@dataclass(frozen=True)
class TransferFailed:
    error: str


@dataclass(frozen=True)
class RemoteStatusObserved:
    status: UploadStatus


@dataclass(frozen=True)
class RemoteTerminalObserved:
    status: UploadStatus
    error: Optional[str] = None


@dataclass(frozen=True)
class ProcessingResumed:
    pass


@dataclass(frozen=True)
class UploadCancelled:
    pass


Message = Union[
    ValidationStarted, SelectionRejected, FileSelected, UploadRequested, TicketAcquired, TicketFailed,
    TransferProgressed, TransferSucceeded, TransferFailed, RemoteStatusObserved, RemoteTerminalObserved,
    ProcessingResumed, UploadCancelled,
]


def estimate_eta(size: int, percent: float, started_at: float, now: float) -> Optional[int]:
    uploaded = size * percent / 100
    speed = uploaded / max(now - started_at, 1)
    if speed <= 0:
        return None
    return round((size - uploaded) / speed)


def reduce(session: UploadSession, message: Message) -> UploadSession:
    status = session.status

    if isinstance(message, ValidationStarted):
        if status in (SessionStatus.PREPARING, SessionStatus.UPLOADING, SessionStatus.PROCESSING):
            return session
        return replace(session, status=SessionStatus.VALIDATING)

    if isinstance(message, SelectionRejected):
        if status != SessionStatus.VALIDATING:
            return session
        return replace(UploadSession(), error=message.error)

    if isinstance(message, FileSelected):
        return UploadSession(
            file_path=message.path,
            selected_file_size=message.size,
            content_type=message.content_type,
        )

    if isinstance(message, UploadRequested):
        if status != SessionStatus.IDLE or session.file_path is None:
            return session
        return replace(session, status=SessionStatus.PREPARING, error=None)

    if isinstance(message, TicketAcquired):
        if status != SessionStatus.PREPARING:
            return session
        return replace(session, status=SessionStatus.UPLOADING, started_at=message.at, progress_percent=0.0)

    if isinstance(message, TicketFailed):
        if status != SessionStatus.PREPARING:
            return session
        return replace(session, status=SessionStatus.ERROR, error=message.error)

    if isinstance(message, TransferProgressed):
        if status != SessionStatus.UPLOADING:
            return session
        eta = session.eta_seconds
        if session.started_at is not None and session.selected_file_size:
            eta = estimate_eta(session.selected_file_size, message.percent, session.started_at, message.at)
        return replace(session, progress_percent=message.percent, eta_seconds=eta)

    if isinstance(message, TransferSucceeded):
        if status != SessionStatus.UPLOADING:
            return session
        return replace(session, status=SessionStatus.PROCESSING, progress_percent=100.0, eta_seconds=0)

    if isinstance(message, TransferFailed):
        if status != SessionStatus.UPLOADING:
            return session
        return replace(session, status=SessionStatus.ERROR, error=message.error)

    if isinstance(message, ProcessingResumed):
        if status != SessionStatus.IDLE:
            return session
        return replace(session, status=SessionStatus.PROCESSING, processing_status=UploadStatus.PROCESSING)

    if isinstance(message, RemoteStatusObserved):
        if status != SessionStatus.PROCESSING:
            return session
        return replace(session, processing_status=message.status)

    if isinstance(message, RemoteTerminalObserved):
        if status != SessionStatus.PROCESSING:
            return session
        if message.status == UploadStatus.COMPLETED:
            return replace(session, status=SessionStatus.COMPLETED, processing_status=message.status)
        if message.status == UploadStatus.CANCELLED:
            return replace(session, status=SessionStatus.CANCELLED, processing_status=message.status)
        return replace(
            session,
            status=SessionStatus.ERROR,
            processing_status=message.status,
            error=message.error or "Video processing failed",
        )

    if isinstance(message, UploadCancelled):
        if status.is_terminal:
            return session
        return UploadSession(status=SessionStatus.CANCELLED)

    return session
