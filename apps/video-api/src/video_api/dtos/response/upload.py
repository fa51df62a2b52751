from pydantic import BaseModel, Field


class UploadTicketResponse(BaseModel):
    url: str = Field(..., description="One-time ingestion URL the client PUTs the file chunks to")
    id: str = Field(..., description="Provider direct upload id")


class CancelUploadResponse(BaseModel):
    ok: bool = True


class WebhookResponse(BaseModel):
    success: bool = True
