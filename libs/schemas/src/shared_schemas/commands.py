from pydantic import Field

from shared_schemas.base import CamelModel


class TicketRequest(CamelModel):
    record_id: str = Field(..., min_length=1, description="Content record the upload belongs to")


class CancelUploadRequest(CamelModel):
    record_id: str = Field(..., min_length=1)


class StatusPatchRequest(CamelModel):
    upload_status: str = Field(..., description="Interim status reported by the uploading client")
