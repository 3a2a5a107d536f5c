"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RecognizeResponse(BaseModel):
    text: str


class SynthesizeRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: str | None = Field(default=None, description="Voice name; defaults to SPEECH_VOICE_NAME.")


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int


class ChannelAccount(BaseModel):
    id: str
    name: str | None = None


class Activity(BaseModel):
    """Subset of a bot activity this service reads."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    text: str | None = None
    recipient: ChannelAccount | None = None
    members_added: list[ChannelAccount] = Field(default_factory=list, alias="membersAdded")


class BotReply(BaseModel):
    type: str = "message"
    text: str


class MessagesResponse(BaseModel):
    replies: list[BotReply]
