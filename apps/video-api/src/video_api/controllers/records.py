from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette import EventSourceResponse

from shared_schemas.base import UploadStatus
from shared_schemas.commands import StatusPatchRequest
from shared_schemas.events import RecordStatusMessage
from shared_schemas.records import ContentRecord
from video_api.cores.config import settings
from video_api.cores.injectable import get_notifier, get_record_store, get_upload_service
from video_api.services.record_store import RecordStore
from video_api.services.status_notifier import StatusNotifier
from video_api.services.upload_flow import RecordNotFound, UploadFlowService

router = APIRouter()


@router.get("/{record_id}", response_model=ContentRecord, response_model_by_alias=True)
async def get_record(record_id: str, store: RecordStore = Depends(get_record_store)):
    record = await store.get(record_id)
    if record is None:
        raise HTTPException(404, "Record not found")
    return record


@router.patch("/{record_id}", response_model=ContentRecord, response_model_by_alias=True)
async def patch_record_status(
        record_id: str,
        request: StatusPatchRequest,
        service: UploadFlowService = Depends(get_upload_service)
):
    status = UploadStatus.parse(request.upload_status)
    if status != UploadStatus.PROCESSING:
        raise HTTPException(422, "Only the processing status can be reported by clients")
    try:
        return await service.mark_processing(record_id)
    except RecordNotFound:
        raise HTTPException(404, "Record not found")


def _sse(message: RecordStatusMessage) -> dict:
    return {"event": "update", "data": message.model_dump_json(by_alias=True)}


@router.get("/{record_id}/events")
async def stream_record_status(
        record_id: str,
        request: Request,
        store: RecordStore = Depends(get_record_store),
        notifier: StatusNotifier = Depends(get_notifier)
):
    if await store.get(record_id) is None:
        raise HTTPException(404, "Record not found")

    async def event_generator():
        # Subscribe before the snapshot so no change slips in between.
        async with notifier.subscribe(record_id) as messages:
            current = await store.get(record_id)
            if current is not None:
                yield _sse(RecordStatusMessage.for_record(current))
                if current.upload_status.is_terminal:
                    yield {"event": "close", "data": "Stream closed"}
                    return
            async for message in messages:
                if await request.is_disconnected():
                    break
                yield _sse(message)
                if message.status.is_terminal:
                    yield {"event": "close", "data": "Stream closed"}
                    break

    return EventSourceResponse(event_generator(), ping=settings.STREAM_PING_SECONDS)
