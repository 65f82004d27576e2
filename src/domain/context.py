from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.conversation.state import MediaRef
from src.domain.resolver import ReferenceResolver
from src.extract.base import CategorySuggester, VendorNormalizer
from src.ledger.audit import AuditLedger
from src.ledger.writer import IdempotentWriter


@dataclass(frozen=True)
class DispatchContext:
    """Normalized context every handler receives."""

    tenant_id: str
    actor_identity: str
    idempotency_key: str
    source_msg_id: str | None = None
    media: MediaRef | None = None


@dataclass
class DomainServices:
    """Collaborators shared by all handlers, built once at startup."""

    db: async_sessionmaker
    writer: IdempotentWriter
    audit: AuditLedger
    resolver: ReferenceResolver
    category_suggester: CategorySuggester
    vendor_normalizer: VendorNormalizer
    category_timeout_s: float = 1.5


@dataclass(frozen=True)
class HandlerResult:
    summary: str
    inserted: bool = True
    data: dict[str, Any] = field(default_factory=dict)


def dollars(cents: int) -> str:
    return f"${cents / 100:,.2f}"
