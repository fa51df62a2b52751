import logging
from typing import Optional

from shared_provider.mux import DirectUpload, MuxClient, ProviderError
from shared_schemas.correlation import CorrelationToken
from shared_schemas.records import ContentRecord
from video_api.services.record_store import RecordStore
from video_api.services.status_notifier import StatusNotifier


logger = logging.getLogger(__name__)


class RecordNotFound(Exception):
    pass


class UploadFlowService:
    def __init__(
            self,
            store: RecordStore,
            provider: MuxClient,
            notifier: StatusNotifier,
            cors_origin: str = "*",
            subtitles_language: Optional[str] = None
    ):
        self.store = store
        self.provider = provider
        self.notifier = notifier
        self.cors_origin = cors_origin
        self.subtitles_language = subtitles_language

    async def create_upload_ticket(self, record_id: str) -> DirectUpload:
        if await self.store.get(record_id) is None:
            raise RecordNotFound(record_id)
        token = CorrelationToken(record_id=record_id)
        upload = await self.provider.create_direct_upload(
            passthrough=token.encode(),
            cors_origin=self.cors_origin,
            subtitles_language=self.subtitles_language
        )
        record = await self.store.issue_ticket(record_id, upload.id)
        if record is None:
            # The provider ticket is still usable; the asset_created webhook just won't find it.
            logger.error(f"Record {record_id} vanished before direct upload {upload.id} could be stored")
        else:
            await self.notifier.publish(record)
        logger.info(f"Issued direct upload {upload.id} for record {record_id}")
        return upload

    async def cancel_upload(self, record_id: str) -> ContentRecord:
        record = await self.store.get(record_id)
        if record is None or not record.direct_upload_id:
            raise RecordNotFound(record_id)
        try:
            await self.provider.cancel_direct_upload(record.direct_upload_id)
        except ProviderError as e:
            logger.error(f"Provider cancel failed for upload {record.direct_upload_id}: {e}")
        updated = await self.store.mark_cancelled(record_id)
        if updated is None:
            current = await self.store.get(record_id)
            if current is None:
                raise RecordNotFound(record_id)
            logger.info(f"Ignoring cancel for record {record_id} in {current.upload_status.value}")
            return current
        await self.notifier.publish(updated)
        logger.info(f"Cancelled upload for record {record_id}")
        return updated

    async def mark_processing(self, record_id: str) -> ContentRecord:
        """Interim client report; a terminal record is returned unchanged"""
        updated = await self.store.mark_processing(record_id)
        if updated is not None:
            await self.notifier.publish(updated)
            return updated
        current = await self.store.get(record_id)
        if current is None:
            raise RecordNotFound(record_id)
        logger.info(f"Ignoring processing report for record {record_id} in {current.upload_status.value}")
        return current
