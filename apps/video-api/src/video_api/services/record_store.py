"""Persistence of the upload fields of content records.

Every write is a single conditional find-and-update that returns the record as
it is after the write (``None`` when nothing matched), so concurrent webhook
deliveries never race a read against a write.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from beanie import UpdateResponse
from beanie.operators import Set
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from shared_schemas.base import TERMINAL_STATUSES, UploadStatus
from shared_schemas.records import ContentRecord, MediaMetadata, utcnow
from video_api.models.record import RecordDocument

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    pass


@dataclass(frozen=True)
class RecordMatch:
    record_id: Optional[str] = None
    direct_upload_id: Optional[str] = None
    exclude_statuses: FrozenSet[UploadStatus] = field(default_factory=frozenset)


class RecordStore(abc.ABC):

    @abc.abstractmethod
    async def get(self, record_id: str) -> Optional[ContentRecord]:
        ...

    @abc.abstractmethod
    async def insert(self, record: ContentRecord) -> ContentRecord:
        ...

    @abc.abstractmethod
    async def find_by_asset(self, asset_id: str, direct_upload_id: Optional[str] = None) -> Optional[ContentRecord]:
        ...

    @abc.abstractmethod
    async def latest_with_status(self, status: UploadStatus) -> Optional[ContentRecord]:
        ...

    @abc.abstractmethod
    async def find_and_set(self, match: RecordMatch, changes: Dict[str, Any]) -> Optional[ContentRecord]:
        ...

    async def _set(self, match: RecordMatch, **changes: Any) -> Optional[ContentRecord]:
        changes["updated_at"] = utcnow()
        return await self.find_and_set(match, changes)

    async def issue_ticket(self, record_id: str, direct_upload_id: str) -> Optional[ContentRecord]:
        # A new ticket starts a new session, so this is the one write allowed to leave a terminal state.
        return await self._set(
            RecordMatch(record_id=record_id),
            direct_upload_id=direct_upload_id,
            upload_status=UploadStatus.PENDING,
            error_message=None,
        )

    async def mark_processing(self, record_id: str) -> Optional[ContentRecord]:
        return await self._set(
            RecordMatch(record_id=record_id, exclude_statuses=TERMINAL_STATUSES),
            upload_status=UploadStatus.PROCESSING,
        )

    async def link_asset(self, direct_upload_id: str, asset_id: str) -> Optional[ContentRecord]:
        return await self._set(
            RecordMatch(direct_upload_id=direct_upload_id, exclude_statuses=TERMINAL_STATUSES),
            external_asset_id=asset_id,
            upload_status=UploadStatus.PROCESSING,
        )

    async def complete(
            self,
            record_id: str,
            asset_id: str,
            playback_id: str,
            metadata: MediaMetadata
    ) -> Optional[ContentRecord]:
        return await self._set(
            RecordMatch(record_id=record_id),
            upload_status=UploadStatus.COMPLETED,
            external_asset_id=asset_id,
            external_playback_id=playback_id,
            media_metadata=metadata,
            error_message=None,
        )

    async def mark_cancelled(self, record_id: str) -> Optional[ContentRecord]:
        return await self._set(
            RecordMatch(record_id=record_id, exclude_statuses=frozenset({UploadStatus.COMPLETED})),
            upload_status=UploadStatus.CANCELLED,
        )

    async def mark_failed(self, record_id: str, message: str) -> Optional[ContentRecord]:
        return await self._set(
            RecordMatch(record_id=record_id, exclude_statuses=frozenset({UploadStatus.COMPLETED})),
            upload_status=UploadStatus.FAILED,
            error_message=message,
        )

    async def latest_processing(self) -> Optional[ContentRecord]:
        return await self.latest_with_status(UploadStatus.PROCESSING)

    async def close(self) -> None:
        return None


class MemoryRecordStore(RecordStore):
    """Process-local store for development and tests"""

    def __init__(self):
        self._records: Dict[str, ContentRecord] = {}

    async def get(self, record_id: str) -> Optional[ContentRecord]:
        return self._records.get(record_id)

    async def insert(self, record: ContentRecord) -> ContentRecord:
        self._records[record.id] = record
        return record

    async def latest_with_status(self, status: UploadStatus) -> Optional[ContentRecord]:
        candidates = [r for r in self._records.values() if r.upload_status == status]
        if not candidates:
            return None
        return max(candidates, key=lambda r: r.updated_at)

    async def find_by_asset(self, asset_id: str, direct_upload_id: Optional[str] = None) -> Optional[ContentRecord]:
        for record in self._records.values():
            if record.external_asset_id == asset_id:
                return record
        if direct_upload_id is None:
            return None
        return next((r for r in self._records.values() if r.direct_upload_id == direct_upload_id), None)

    def _find(self, match: RecordMatch) -> Optional[ContentRecord]:
        if match.record_id is not None:
            return self._records.get(match.record_id)
        if match.direct_upload_id is not None:
            for record in self._records.values():
                if record.direct_upload_id == match.direct_upload_id:
                    return record
        return None

    async def find_and_set(self, match: RecordMatch, changes: Dict[str, Any]) -> Optional[ContentRecord]:
        # No await between the lookup and the write: atomic on the event loop.
        record = self._find(match)
        if record is None or record.upload_status in match.exclude_statuses:
            return None
        updated = record.model_copy(update=changes)
        self._records[updated.id] = updated
        return updated


def _to_mongo(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Enum):
        return value.value
    return value


class MongoRecordStore(RecordStore):

    async def get(self, record_id: str) -> Optional[ContentRecord]:
        try:
            document = await RecordDocument.get(record_id)
        except PyMongoError as e:
            raise RecordStoreError(str(e)) from e
        return document.to_record() if document else None

    async def insert(self, record: ContentRecord) -> ContentRecord:
        try:
            await RecordDocument.from_record(record).insert()
        except PyMongoError as e:
            raise RecordStoreError(str(e)) from e
        return record

    async def latest_with_status(self, status: UploadStatus) -> Optional[ContentRecord]:
        try:
            document = await RecordDocument.find(
                RecordDocument.upload_status == status
            ).sort(-RecordDocument.updated_at).first_or_none()
        except PyMongoError as e:
            raise RecordStoreError(str(e)) from e
        return document.to_record() if document else None

    async def find_by_asset(self, asset_id: str, direct_upload_id: Optional[str] = None) -> Optional[ContentRecord]:
        clauses: list[Dict[str, Any]] = [{"external_asset_id": asset_id}]
        if direct_upload_id is not None:
            clauses.append({"direct_upload_id": direct_upload_id})
        try:
            document = await RecordDocument.find_one({"$or": clauses})
        except PyMongoError as e:
            raise RecordStoreError(str(e)) from e
        return document.to_record() if document else None

    async def find_and_set(self, match: RecordMatch, changes: Dict[str, Any]) -> Optional[ContentRecord]:
        query: Dict[str, Any] = {}
        if match.record_id is not None:
            query["_id"] = match.record_id
        elif match.direct_upload_id is not None:
            query["direct_upload_id"] = match.direct_upload_id
        else:
            raise ValueError("RecordMatch needs a record id or a direct upload id")
        if match.exclude_statuses:
            query["upload_status"] = {"$nin": sorted(s.value for s in match.exclude_statuses)}
        try:
            document = await RecordDocument.find_one(query).update(
                Set({key: _to_mongo(value) for key, value in changes.items()}),
                response_type=UpdateResponse.NEW_DOCUMENT
            )
        except PyMongoError as e:
            logger.error(f"Record update failed for {query}: {e}")
            raise RecordStoreError(str(e)) from e
        return document.to_record() if document else None
