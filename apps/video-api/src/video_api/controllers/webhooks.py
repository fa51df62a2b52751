import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from video_api.cores.exceptions import WebhookError
from video_api.cores.injectable import get_webhook_receiver
from video_api.dtos.response.upload import WebhookResponse
from video_api.services.webhook_receiver import WebhookReceiver

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/mux", response_model=WebhookResponse)
async def receive_provider_webhook(
        request: Request,
        receiver: WebhookReceiver = Depends(get_webhook_receiver)
):
    body = await request.body()
    try:
        receiver.verify(body, request.headers)
        event = receiver.parse(body)
        logger.info(f"Received webhook {event.type}")
        await receiver.handle(event)
    except WebhookError as e:
        logger.error(f"Webhook rejected with {e.status_code}: {e}")
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    return WebhookResponse()
