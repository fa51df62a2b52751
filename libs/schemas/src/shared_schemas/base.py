from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UploadStatus(str, Enum):
    """Persisted upload status of a content record"""
    NONE = "NONE"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, value: str | None) -> "UploadStatus | None":
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({UploadStatus.COMPLETED, UploadStatus.CANCELLED, UploadStatus.FAILED})
