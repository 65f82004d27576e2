"""Pending conversation state: what the bot is waiting for from one identity."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class MediaRef(BaseModel):
    """Pointer to media attached to the triggering message (receipt photo, etc.)."""

    model_config = ConfigDict(extra="ignore")

    url: str
    content_type: str | None = None
    transcript: str | None = None


class JobOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    number: int | None = None


class _PendingBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    draft: dict[str, Any] = Field(default_factory=dict)
    source_msg_id: str
    media: MediaRef | None = None


class AwaitingConfirmation(_PendingBase):
    kind: Literal["awaiting_confirmation"] = "awaiting_confirmation"


class AwaitingReference(_PendingBase):
    kind: Literal["awaiting_reference"] = "awaiting_reference"
    options: list[JobOption] = Field(default_factory=list)
    page: int = 0


class AwaitingClarification(_PendingBase):
    kind: Literal["awaiting_clarification"] = "awaiting_clarification"
    issues: list[str] = Field(default_factory=list)


PendingState = Annotated[
    AwaitingConfirmation | AwaitingReference | AwaitingClarification,
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[PendingState] = TypeAdapter(PendingState)


def parse_pending_state(document: dict[str, Any]) -> PendingState:
    """Parse a stored JSON document. Raises pydantic.ValidationError if malformed."""
    return _adapter.validate_python(document)


def to_patch(state: _PendingBase) -> dict[str, Any]:
    """Serialize a state (or partial state) for the JSONB shallow merge."""
    return state.model_dump(mode="json", exclude_none=True)
