import json
import logging
import math
from typing import Mapping, Optional

from pydantic import ValidationError

from shared_provider.signature import SignatureVerificationError, verify_signature
from shared_schemas.correlation import CorrelationToken
from shared_schemas.events import (
    AssetCreatedEvent, AssetErroredEvent, AssetReadyData, AssetReadyEvent,
    ProviderEvent, StoredResolution, UnknownEvent, UploadCancelledEvent, parse_provider_event
)
from shared_schemas.records import ContentRecord, MediaMetadata
from video_api.cores.exceptions import (
    CorrelationError, InvalidSignatureError, MalformedEventError, PersistenceError
)
from video_api.services.record_store import RecordStore
from video_api.services.status_notifier import StatusNotifier

logger = logging.getLogger(__name__)


def parse_aspect_ratio(raw: str | float | None) -> Optional[float]:
    """Accept ``"16:9"`` as well as plain numbers"""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        width, sep, height = raw.partition(":")
        try:
            value = float(width) / float(height) if sep else float(width)
        except (ValueError, ZeroDivisionError):
            return None
    if not math.isfinite(value) or value <= 0:
        return None
    return round(value, 4)


def _dimensions(data: AssetReadyData) -> tuple[Optional[int], Optional[int]]:
    if isinstance(data.max_stored_resolution, StoredResolution):
        if data.max_stored_resolution.width or data.max_stored_resolution.height:
            return data.max_stored_resolution.width, data.max_stored_resolution.height
    for track in data.tracks:
        if track.type == "video":
            return track.max_width, track.max_height
    return None, None


class WebhookReceiver:
    def __init__(
            self,
            store: RecordStore,
            notifier: StatusNotifier,
            poster_url_template: str,
            signing_secret: Optional[str] = None,
            tolerance: int = 300
    ):
        self.store = store
        self.notifier = notifier
        self.poster_url_template = poster_url_template
        self.signing_secret = signing_secret
        self.tolerance = tolerance

    def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
        if not self.signing_secret:
            return
        try:
            verify_signature(body, headers.get("mux-signature"), self.signing_secret, self.tolerance)
        except SignatureVerificationError as e:
            raise InvalidSignatureError(str(e)) from e

    def parse(self, body: bytes) -> ProviderEvent:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MalformedEventError("Body is not valid JSON") from e
        try:
            return parse_provider_event(payload)
        except ValidationError as e:
            raise MalformedEventError(f"Event does not match its contract: {e.error_count()} error(s)") from e

    async def handle(self, event: ProviderEvent) -> None:
        if isinstance(event, AssetReadyEvent):
            await self._handle_asset_ready(event)
        elif isinstance(event, UploadCancelledEvent):
            await self._handle_upload_cancelled(event)
        elif isinstance(event, AssetCreatedEvent):
            await self._handle_asset_created(event)
        elif isinstance(event, AssetErroredEvent):
            await self._handle_asset_errored(event)
        elif isinstance(event, UnknownEvent):
            logger.info(f"Ignoring unhandled webhook type {event.type}")

    async def _write(self, operation, *args) -> Optional[ContentRecord]:
        try:
            record = await operation(*args)
        except Exception as e:
            logger.error(f"Record store failed during {operation.__name__}{args[:1]}: {e}", exc_info=True)
            raise PersistenceError(f"Record store failed: {e}") from e
        if record is not None:
            await self.notifier.publish(record)
        return record

    async def _resolve_record_id(self, token: CorrelationToken, data: AssetReadyData) -> str:
        try:
            record = await self.store.get(token.record_id)
            if record is None:
                record = await self.store.find_by_asset(data.id, data.upload_id)
            if record is not None:
                return record.id
            fallback = await self.store.latest_processing()
        except Exception as e:
            raise PersistenceError(f"Record store failed: {e}") from e
        if fallback is None:
            raise CorrelationError(f"No record matches {token.record_id} and none is processing")
        # Guesswork: with two uploads processing at once this can pick the wrong record.
        logger.warning(
            f"Record {token.record_id} not found; applying asset to most recently "
            f"updated processing record {fallback.id}"
        )
        return fallback.id

    async def _handle_asset_ready(self, event: AssetReadyEvent) -> None:
        data = event.data
        token = CorrelationToken.decode(data.passthrough)
        if token is None:
            raise CorrelationError(f"Asset {data.id} carries no record id in its passthrough")
        if not data.playback_ids:
            raise MalformedEventError(f"Asset {data.id} has no playback id")
        playback_id = data.playback_ids[0].id

        record_id = await self._resolve_record_id(token, data)
        width, height = _dimensions(data)
        metadata = MediaMetadata(
            duration=round(data.duration or 0),
            width=width,
            height=height,
            aspect_ratio=parse_aspect_ratio(data.aspect_ratio),
            poster_url=self.poster_url_template.format(playback_id=playback_id),
        )
        record = await self._write(self.store.complete, record_id, data.id, playback_id, metadata)
        if record is None:
            raise PersistenceError(f"Update of record {record_id} affected no rows")
        logger.info(f"Record {record_id} completed with asset {data.id} / playback {playback_id}")

    async def _handle_upload_cancelled(self, event: UploadCancelledEvent) -> None:
        settings = event.data.new_asset_settings
        token = CorrelationToken.decode(settings.passthrough if settings else None)
        if token is None:
            logger.warning(f"Upload {event.data.id} cancelled without a record id; nothing to update")
            return
        record = await self._write(self.store.mark_cancelled, token.record_id)
        if record is None:
            logger.warning(f"Cancelled upload did not update record {token.record_id} (unknown or already completed)")
            return
        logger.info(f"Marked record {token.record_id} upload as cancelled")

    async def _handle_asset_created(self, event: AssetCreatedEvent) -> None:
        data = event.data
        record = await self._write(self.store.link_asset, data.upload_id, data.asset_id)
        if record is None:
            logger.info(f"No open record for direct upload {data.upload_id}; asset {data.asset_id} not linked")
            return
        logger.info(f"Linked direct upload {data.upload_id} -> asset {data.asset_id} (record {record.id})")

    async def _handle_asset_errored(self, event: AssetErroredEvent) -> None:
        data = event.data
        token = CorrelationToken.decode(data.passthrough)
        if token is None:
            logger.warning(f"Asset {data.id} errored without a record id; nothing to update")
            return
        messages = data.errors.messages if data.errors else []
        message = "; ".join(messages) or "Video processing failed"
        record = await self._write(self.store.mark_failed, token.record_id, message)
        if record is None:
            logger.warning(f"Errored asset {data.id} did not update record {token.record_id}")
            return
        logger.info(f"Marked record {token.record_id} as failed: {message}")
