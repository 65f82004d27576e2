from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.conversation.state import MediaRef


class InboundMessage(BaseModel):
    """One message as delivered by a transport (webhook body, Telegram update)."""

    from_identity: str = Field(min_length=1)
    text: str = ""
    attachments: list[MediaRef] = Field(default_factory=list)
    message_id: str = Field(min_length=1)
    type_hint: str | None = None

    @field_validator("text", mode="before")
    @classmethod
    def _normalize_text(cls, v: Any) -> str:
        if v is None:
            return ""
        if not isinstance(v, str):
            msg = f"text must be a string (got {type(v).__name__})"
            raise ValueError(msg)
        return v.strip()

    @property
    def media(self) -> MediaRef | None:
        return self.attachments[0] if self.attachments else None


class WebhookReply(BaseModel):
    reply: str | None
    phase: str


class ErrorBody(BaseModel):
    code: str
    message: str
