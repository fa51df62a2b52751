from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from shared_schemas.base import CamelModel, UploadStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaMetadata(CamelModel):
    duration: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    aspect_ratio: Optional[float] = None
    poster_url: Optional[str] = None


class ContentRecord(CamelModel):
    """Upload-related fields of a lesson, as read and written by the upload subsystem"""
    id: str
    upload_status: UploadStatus = UploadStatus.NONE
    direct_upload_id: Optional[str] = None
    external_asset_id: Optional[str] = None
    external_playback_id: Optional[str] = None
    media_metadata: Optional[MediaMetadata] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
