import logging

from fastapi import APIRouter, Depends, HTTPException

from shared_provider.mux import ProviderError
from shared_schemas.commands import CancelUploadRequest, TicketRequest
from video_api.cores.injectable import get_upload_service
from video_api.dtos.response.upload import CancelUploadResponse, UploadTicketResponse
from video_api.services.upload_flow import RecordNotFound, UploadFlowService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/upload-url", response_model=UploadTicketResponse)
async def create_upload_url(
        request: TicketRequest,
        service: UploadFlowService = Depends(get_upload_service)
):
    try:
        upload = await service.create_upload_ticket(request.record_id)
    except RecordNotFound:
        raise HTTPException(404, "Record not found")
    except ProviderError as e:
        logger.error(f"Failed to create upload URL for record {request.record_id}: {e}")
        raise HTTPException(502, "Failed to create upload URL")
    return UploadTicketResponse(url=upload.url, id=upload.id)


@router.post("/cancel-upload", response_model=CancelUploadResponse)
async def cancel_upload(
        request: CancelUploadRequest,
        service: UploadFlowService = Depends(get_upload_service)
):
    try:
        await service.cancel_upload(request.record_id)
    except RecordNotFound:
        raise HTTPException(404, "Direct upload not found")
    return CancelUploadResponse()
