"""Custom exception hierarchy for tradeledger.

All application-specific exceptions inherit from LedgerError, which carries an
error code used to pick the conversational reply or the HTTP error body.
CommandError subclasses are the outcomes a command can end in; the router
returns them as values instead of raising them past the dispatch table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


class LedgerError(Exception):
    """Base exception for all tradeledger errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class GatewayError(LedgerError):
    """Errors in the webhook / dispatch layer."""

    def __init__(self, message: str, *, code: str = "GATEWAY_ERROR") -> None:
        super().__init__(message, code=code)


class ChannelError(LedgerError):
    """Errors in channel adapters (Telegram, etc.)."""

    def __init__(self, message: str, *, code: str = "CHANNEL_ERROR") -> None:
        super().__init__(message, code=code)


class LLMError(LedgerError):
    """Errors from LLM API calls (timeouts, rate limits, failures)."""

    def __init__(self, message: str, *, code: str = "LLM_ERROR") -> None:
        super().__init__(message, code=code)


class CommandError(LedgerError):
    """A command could not be applied. Base for the pipeline error taxonomy."""

    retryable: bool = False

    def __init__(self, message: str, *, code: str = "COMMAND_ERROR") -> None:
        super().__init__(message, code=code)


@dataclass(frozen=True)
class FieldIssue:
    """One problem with one CIL field."""

    loc: str
    message: str
    kind: Literal["missing", "invalid"] = "invalid"


class CILValidationError(CommandError):
    """A CIL envelope is missing fields or carries malformed ones."""

    def __init__(
        self, message: str = "Command failed validation", *, issues: list[FieldIssue] | None = None
    ) -> None:
        super().__init__(message, code="VALIDATION_ERROR")
        self.issues: list[FieldIssue] = issues or []

    def only_missing(self, field: str) -> bool:
        """True when the single problem is that ``field`` was not supplied."""
        return len(self.issues) == 1 and self.issues[0].loc == field and (
            self.issues[0].kind == "missing"
        )


class NotFoundError(CommandError):
    """A referenced job, quote, agreement or pricing item does not exist."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code)


class ConflictError(CommandError):
    """Idempotency key already consumed, or a domain precondition failed.

    code="DUPLICATE" for a consumed key, "CONFLICT" for a precondition.
    """

    def __init__(self, message: str, *, code: str = "CONFLICT") -> None:
        super().__init__(message, code=code)


class DependencyTimeoutError(CommandError):
    """A dependency did not answer in time. The outcome is unknown."""

    retryable = True

    def __init__(self, message: str, *, code: str = "TIMEOUT") -> None:
        super().__init__(message, code=code)


class UnavailableError(CommandError):
    """The database or lock backend could not be reached."""

    retryable = True

    def __init__(self, message: str, *, code: str = "UNAVAILABLE") -> None:
        super().__init__(message, code=code)
