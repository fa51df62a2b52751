"""Provider lifecycle webhooks and the record status messages pushed to clients.

Webhook bodies are ``{"type": ..., "data": ...}`` where the shape of ``data``
depends on ``type``. Each known type is its own envelope model so the union
below can be discriminated on ``type``; anything else parses as
:class:`UnknownEvent`.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter

from shared_schemas.base import CamelModel, UploadStatus
from shared_schemas.records import ContentRecord


ASSET_READY = "video.asset.ready"
ASSET_ERRORED = "video.asset.errored"
UPLOAD_CANCELLED = "video.upload.cancelled"
UPLOAD_ASSET_CREATED = "video.upload.asset_created"


class PlaybackId(BaseModel):
    id: str
    policy: Optional[str] = None


class StoredResolution(BaseModel):
    width: Optional[int] = None
    height: Optional[int] = None


class Track(BaseModel):
    type: Optional[str] = None
    max_width: Optional[int] = None
    max_height: Optional[int] = None


class AssetReadyData(BaseModel):
    id: str
    upload_id: Optional[str] = None
    playback_ids: List[PlaybackId] = []
    aspect_ratio: Optional[str | float] = None
    # Older payloads send an object, current ones a tier name such as "HD".
    max_stored_resolution: Optional[StoredResolution | str] = None
    tracks: List[Track] = []
    passthrough: Optional[str] = None
    duration: Optional[float] = None


class NewAssetSettings(BaseModel):
    passthrough: Optional[str] = None


class UploadCancelledData(BaseModel):
    id: Optional[str] = None
    new_asset_settings: Optional[NewAssetSettings] = None


class AssetCreatedData(BaseModel):
    upload_id: str = Field(validation_alias=AliasChoices("upload_id", "id"))
    asset_id: str


class AssetError(BaseModel):
    type: Optional[str] = None
    messages: List[str] = []


class AssetErroredData(BaseModel):
    id: str
    passthrough: Optional[str] = None
    errors: Optional[AssetError] = None


class AssetReadyEvent(BaseModel):
    type: Literal["video.asset.ready"]
    data: AssetReadyData


class UploadCancelledEvent(BaseModel):
    type: Literal["video.upload.cancelled"]
    data: UploadCancelledData


class AssetCreatedEvent(BaseModel):
    type: Literal["video.upload.asset_created"]
    data: AssetCreatedData


class AssetErroredEvent(BaseModel):
    type: Literal["video.asset.errored"]
    data: AssetErroredData


class UnknownEvent(BaseModel):
    type: str
    data: object = None


KNOWN_EVENT_TYPES = frozenset({ASSET_READY, ASSET_ERRORED, UPLOAD_CANCELLED, UPLOAD_ASSET_CREATED})

KnownEvent = Annotated[
    Union[AssetReadyEvent, UploadCancelledEvent, AssetCreatedEvent, AssetErroredEvent],
    Field(discriminator="type"),
]
ProviderEvent = Union[AssetReadyEvent, UploadCancelledEvent, AssetCreatedEvent, AssetErroredEvent, UnknownEvent]

_known_event_adapter = TypeAdapter(KnownEvent)


def parse_provider_event(payload: object) -> ProviderEvent:
    """Validate a decoded webhook body; raises ``pydantic.ValidationError`` on contract violations."""
    envelope = UnknownEvent.model_validate(payload)
    if envelope.type not in KNOWN_EVENT_TYPES:
        return envelope
    return _known_event_adapter.validate_python(payload)


class RecordStatusMessage(CamelModel):
    """Message pushed on a record's status stream"""
    status: UploadStatus
    record: Optional[ContentRecord] = None

    @classmethod
    def for_record(cls, record: ContentRecord) -> "RecordStatusMessage":
        return cls(status=record.upload_status, record=record)
