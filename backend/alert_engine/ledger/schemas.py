"""Ad-hoc message request schema."""

from pydantic import BaseModel, Field


class MessageSendRequest(BaseModel):
    to: str = Field(..., min_length=1, max_length=32)
    body: str = Field(..., min_length=1, max_length=1600)
    provider_id: str | None = None
