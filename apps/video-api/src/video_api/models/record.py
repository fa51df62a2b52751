from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import Field

from shared_schemas.base import UploadStatus
from shared_schemas.records import ContentRecord, MediaMetadata, utcnow


class RecordDocument(Document):
    id: str
    upload_status: UploadStatus = UploadStatus.NONE
    direct_upload_id: Optional[Indexed(str)] = None
    external_asset_id: Optional[str] = None
    external_playback_id: Optional[str] = None
    media_metadata: Optional[MediaMetadata] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "lessons"
        indexes = [
            [("upload_status", 1), ("updated_at", -1)],
        ]

    def to_record(self) -> ContentRecord:
        return ContentRecord.model_validate(self.model_dump(exclude={"revision_id"}))

    @classmethod
    def from_record(cls, record: ContentRecord) -> "RecordDocument":
        return cls(**record.model_dump())
