from fastapi import APIRouter
from video_api.controllers import records, upload, webhooks

api_router = APIRouter()

api_router.include_router(upload.router, tags=["Upload"])
api_router.include_router(records.router, prefix="/records", tags=["Records"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
