from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx
import typer

from shared_schemas.base import UploadStatus
from shared_schemas.records import ContentRecord
from video_uploader.cores.config import settings
from video_uploader.cores.exceptions import ValidationError
from video_uploader.services.orchestrator import UploadOrchestrator
from video_uploader.services.state import SessionStatus, UploadSession
from video_uploader.utils.formatting import format_bytes, format_seconds


LOGGER = logging.getLogger("video_uploader")


cli = typer.Typer(add_completion=False, help="Upload lesson videos and follow their processing")


api_url_option = typer.Option(
    None,
    "--api-url",
    help="Base URL of the video API (defaults to API_BASE_URL)",
    envvar="API_BASE_URL",
)


def _prepare_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_client(api_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=api_url, timeout=settings.REQUEST_TIMEOUT_SECONDS)


class _Reporter:
    """Echoes status changes and whole-percent progress steps"""

    def __init__(self) -> None:
        self._status: Optional[SessionStatus] = None
        self._percent = -1

    def __call__(self, session: UploadSession) -> None:
        if session.status != self._status:
            self._status = session.status
            if session.status == SessionStatus.IDLE and session.selected_file_size:
                typer.echo(f"====> Selected {session.file_path.name} ({format_bytes(session.selected_file_size)})")
            elif session.status not in (SessionStatus.IDLE, SessionStatus.VALIDATING):
                typer.echo(f"====> {session.status.value.capitalize()}")
        if session.status != SessionStatus.UPLOADING:
            return
        percent = int(session.progress_percent)
        if percent != self._percent:
            self._percent = percent
            eta = f", {format_seconds(session.eta_seconds)} left" if session.eta_seconds else ""
            typer.echo(f"        • {percent}%{eta}")


def _on_complete(record_id: str, record: Optional[ContentRecord]) -> None:
    if record is not None and record.external_playback_id:
        typer.echo(f"Record {record_id} is ready (playback id {record.external_playback_id})")
    else:
        typer.echo(f"Record {record_id} is ready")


async def _wait_for_verdict(orchestrator: UploadOrchestrator) -> UploadSession:
    while True:
        try:
            return await orchestrator.wait()
        except asyncio.CancelledError:
            if not orchestrator.should_confirm_leave:
                typer.echo("Processing continues on the server; use `watch` to follow it.")
                raise
            asyncio.current_task().uncancel()
            if typer.confirm("An upload is in progress. Cancel it and leave?", default=False):
                await orchestrator.cancel_upload()
                return orchestrator.session


async def _upload(path: Path, record_id: str, api_url: str) -> UploadSession:
    async with _open_client(api_url) as http:
        async with UploadOrchestrator(
            record_id,
            http,
            settings,
            on_complete=_on_complete,
            on_change=_Reporter(),
        ) as orchestrator:
            await orchestrator.select_file(path)
            status = await orchestrator.start_upload()
            if status.is_terminal:
                return orchestrator.session
            return await _wait_for_verdict(orchestrator)


async def _watch(record_id: str, api_url: str) -> Optional[UploadSession]:
    async with _open_client(api_url) as http:
        response = await http.get(f"/records/{record_id}")
        response.raise_for_status()
        record = ContentRecord.model_validate(response.json())
        if record.upload_status != UploadStatus.PROCESSING:
            typer.echo(f"Record {record_id} is {record.upload_status.value}; nothing to follow")
            return None
        async with UploadOrchestrator(
            record_id,
            http,
            settings,
            on_complete=_on_complete,
            on_change=_Reporter(),
            initial_status=record.upload_status,
        ) as orchestrator:
            return await orchestrator.wait()


def _finish(session: UploadSession) -> None:
    if session.status == SessionStatus.COMPLETED:
        return
    if session.status == SessionStatus.CANCELLED:
        typer.echo("Upload cancelled")
    else:
        typer.echo(f"Upload failed: {session.error or 'unknown error'}")
    raise typer.Exit(code=1)


@cli.command()
def upload(
    file: Path = typer.Argument(..., help="Video file to upload"),
    record_id: str = typer.Option(..., "--record-id", "-r", help="Content record the video belongs to"),
    api_url: Optional[str] = api_url_option,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log requests and retries"),
) -> None:
    """Upload FILE for a record and wait until the provider has processed it."""

    _prepare_logging(verbose)
    typer.echo(f"Source video: {file}")
    try:
        session = asyncio.run(_upload(file, record_id, api_url or settings.API_BASE_URL))
    except ValidationError as error:
        raise typer.BadParameter(str(error), param_hint="FILE") from error
    except httpx.HTTPError as error:
        typer.echo(f"Video API unreachable: {error}")
        raise typer.Exit(code=1) from error
    _finish(session)


@cli.command()
def watch(
    record_id: str = typer.Argument(..., help="Record whose processing should be followed"),
    api_url: Optional[str] = api_url_option,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log stream reconnects and polls"),
) -> None:
    """Follow a record that is already processing until it reaches a final status."""

    _prepare_logging(verbose)
    try:
        session = asyncio.run(_watch(record_id, api_url or settings.API_BASE_URL))
    except httpx.HTTPError as error:
        typer.echo(f"Video API unreachable: {error}")
        raise typer.Exit(code=1) from error
    if session is not None:
        _finish(session)


if __name__ == "__main__":
    cli()
