"""Telegram response rendering: message splitting and error mapping."""

from __future__ import annotations

import re

# ── Error code → user-friendly message ──────────────────────────────────────

_ERROR_MESSAGES: dict[str, str] = {
    "SESSION_BUSY": "Busy, try again in a moment.",
    "UNAVAILABLE": "I can't reach the ledger right now. Please try again shortly.",
    "BAD_IDENTITY": "I couldn't tell who sent that message.",
}

_DEFAULT_ERROR = "Something went wrong handling that message. Please try again."


def friendly_error_message(code: str | None) -> str:
    """Map GatewayError code to a user-facing message."""
    if code and code in _ERROR_MESSAGES:
        return _ERROR_MESSAGES[code]
    return _DEFAULT_ERROR


# ── Message splitting ────────────────────────────────────────────────────────

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")


def split_message(text: str, max_length: int = 4096) -> list[str]:
    """Split text into chunks within Telegram's message length limit.

    Split priority: paragraphs → lines → sentences → hard cut.
    """
    if not text.strip():
        return []
    if len(text) <= max_length:
        return [text]

    result: list[str] = []
    buf = ""
    for piece in _pieces(text, max_length):
        candidate = f"{buf}\n{piece}" if buf else piece
        if len(candidate) <= max_length:
            buf = candidate
            continue
        if buf:
            result.append(buf)
        buf = piece
    if buf:
        result.append(buf)
    return [c.strip("\n") for c in result if c.strip()]


def _pieces(text: str, max_length: int) -> list[str]:
    """Break text into pieces no longer than max_length, at the coarsest boundary."""
    pieces: list[str] = []
    for line in text.split("\n"):
        if len(line) <= max_length:
            pieces.append(line)
            continue
        for sentence in _SENTENCE_BOUNDARY_RE.split(line):
            while len(sentence) > max_length:
                pieces.append(sentence[:max_length])
                sentence = sentence[max_length:]
            if sentence:
                pieces.append(sentence)
    return pieces
