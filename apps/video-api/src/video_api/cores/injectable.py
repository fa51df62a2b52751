from __future__ import annotations

from fastapi import Depends

from shared_provider.mux import MuxClient
from video_api.cores.config import settings
from video_api.services.record_store import RecordStore
from video_api.services.status_notifier import StatusNotifier
from video_api.services.upload_flow import UploadFlowService
from video_api.services.webhook_receiver import WebhookReceiver


_RecordStore: RecordStore | None = None
_Notifier: StatusNotifier | None = None
_Provider: MuxClient | None = None


def get_record_store() -> RecordStore:
    if _RecordStore is None:
        raise RuntimeError("Record store not initialized")
    return _RecordStore


def get_notifier() -> StatusNotifier:
    if _Notifier is None:
        raise RuntimeError("Status notifier not initialized")
    return _Notifier


def get_provider() -> MuxClient:
    if _Provider is None:
        raise RuntimeError("Provider client not initialized")
    return _Provider


def get_upload_service(
        store: RecordStore = Depends(get_record_store),
        provider: MuxClient = Depends(get_provider),
        notifier: StatusNotifier = Depends(get_notifier)
) -> UploadFlowService:
    return UploadFlowService(
        store,
        provider,
        notifier,
        cors_origin=settings.UPLOAD_CORS_ORIGIN,
        subtitles_language=settings.SUBTITLES_LANGUAGE
    )


def get_webhook_receiver(
        store: RecordStore = Depends(get_record_store),
        notifier: StatusNotifier = Depends(get_notifier)
) -> WebhookReceiver:
    return WebhookReceiver(
        store,
        notifier,
        poster_url_template=settings.POSTER_URL_TEMPLATE,
        signing_secret=settings.MUX_WEBHOOK_SECRET,
        tolerance=settings.WEBHOOK_TOLERANCE_SECONDS
    )
