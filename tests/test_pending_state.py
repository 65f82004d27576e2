"""Tests for pending-state models: discriminated parsing and patch serialization."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.conversation.state import (
    AwaitingClarification,
    AwaitingConfirmation,
    AwaitingReference,
    JobOption,
    MediaRef,
    parse_pending_state,
    to_patch,
)


class TestParsePendingState:
    def test_confirmation(self):
        state = parse_pending_state({
            "kind": "awaiting_confirmation",
            "draft": {"type": "LogExpense"},
            "source_msg_id": "m1",
        })
        assert isinstance(state, AwaitingConfirmation)
        assert state.draft == {"type": "LogExpense"}

    def test_reference_with_options(self):
        state = parse_pending_state({
            "kind": "awaiting_reference",
            "draft": {},
            "source_msg_id": "m1",
            "options": [{"id": "abc", "name": "Oak St", "number": 3}],
            "page": 1,
        })
        assert isinstance(state, AwaitingReference)
        assert state.options == [JobOption(id="abc", name="Oak St", number=3)]
        assert state.page == 1

    def test_clarification(self):
        state = parse_pending_state({
            "kind": "awaiting_clarification",
            "source_msg_id": "m1",
            "issues": ["amount_cents: Field required"],
        })
        assert isinstance(state, AwaitingClarification)

    def test_stale_keys_from_previous_kind_ignored(self):
        # A shallow merge from awaiting_reference leaves options/page behind.
        state = parse_pending_state({
            "kind": "awaiting_confirmation",
            "draft": {},
            "source_msg_id": "m1",
            "options": [{"id": "abc", "name": "Oak St"}],
            "page": 2,
        })
        assert isinstance(state, AwaitingConfirmation)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_pending_state({"kind": "awaiting_payment", "source_msg_id": "m1"})

    def test_missing_source_msg_id_rejected(self):
        with pytest.raises(ValidationError):
            parse_pending_state({"kind": "awaiting_confirmation", "draft": {}})


class TestToPatch:
    def test_media_survives_serialization(self):
        state = AwaitingReference(
            draft={"type": "LogExpense"},
            source_msg_id="m1",
            media=MediaRef(url="https://media/1.jpg", content_type="image/jpeg"),
        )
        patch = to_patch(state)
        assert patch["media"] == {"url": "https://media/1.jpg", "content_type": "image/jpeg"}
        assert patch["kind"] == "awaiting_reference"

    def test_none_fields_omitted(self):
        patch = to_patch(AwaitingConfirmation(draft={}, source_msg_id="m1"))
        assert "media" not in patch
