"""SQLAlchemy 2.0 async models for the ledger, conversation state and audit tables."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.constants import DB_SCHEMA


class Base(DeclarativeBase):
    pass


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def _created_at() -> Mapped[dt.datetime]:
    return mapped_column(DateTime(timezone=True), server_default=func.now())


# ── Conversation plumbing ───────────────────────────────────────────────────


class ConversationLockRecord(Base):
    __tablename__ = "conversation_locks"
    __table_args__ = {"schema": DB_SCHEMA}

    lock_key: Mapped[str] = mapped_column(String(160), primary_key=True)
    lock_token: Mapped[str] = mapped_column(String(36))
    acquired_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PendingStateRecord(Base):
    __tablename__ = "pending_state"
    __table_args__ = {"schema": DB_SCHEMA}

    identity: Mapped[str] = mapped_column(String(160), primary_key=True)
    state: Mapped[dict] = mapped_column(JSONB, default=dict)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuditRecord(Base):
    __tablename__ = "audit"
    __table_args__ = (
        UniqueConstraint("owner_id", "key", name="uq_audit_owner_key"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    key: Mapped[str] = mapped_column(String(200))
    action: Mapped[str] = mapped_column(String(64))
    details: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[dt.datetime] = _created_at()


# ── Entities ─────────────────────────────────────────────────────────────────


class JobRecord(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        UniqueConstraint("owner_id", "job_no", name="uq_jobs_owner_job_no"),
        Index("ix_jobs_owner_lower_name", "owner_id", func.lower(text("name"))),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_no: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(24), default="open")
    active: Mapped[bool] = mapped_column(Boolean, default=False)
    source_msg_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[dt.datetime] = _created_at()
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class LeadRecord(Base):
    __tablename__ = "leads"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(f"{DB_SCHEMA}.jobs.id"))
    customer_name: Mapped[str] = mapped_column(Text)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_channel: Mapped[str] = mapped_column(String(24), default="whatsapp")
    created_at: Mapped[dt.datetime] = _created_at()


class QuoteRecord(Base):
    __tablename__ = "quotes"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(f"{DB_SCHEMA}.jobs.id"))
    line_items: Mapped[list] = mapped_column(JSONB, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_cents: Mapped[int] = mapped_column(BigInteger)
    status: Mapped[str] = mapped_column(String(24), default="draft")
    created_at: Mapped[dt.datetime] = _created_at()


class AgreementRecord(Base):
    __tablename__ = "agreements"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(f"{DB_SCHEMA}.jobs.id"))
    quote_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.quotes.id"), nullable=True
    )
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    contract_price_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    deposit_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    retainage_pct: Mapped[float | None] = mapped_column(Float, nullable=True)
    retainage_release_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_schedule: Mapped[list] = mapped_column(JSONB, default=list)
    start_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    sig_required: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(24), default="draft")
    created_at: Mapped[dt.datetime] = _created_at()


class ChangeOrderRecord(Base):
    __tablename__ = "change_orders"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(f"{DB_SCHEMA}.jobs.id"))
    agreement_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.agreements.id"), nullable=True
    )
    description: Mapped[str] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(BigInteger)
    line_items: Mapped[list] = mapped_column(JSONB, default=list)
    status: Mapped[str] = mapped_column(String(24), default="draft")
    created_at: Mapped[dt.datetime] = _created_at()


class InvoiceRecord(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index(
            "uq_invoices_owner_source_msg",
            "owner_id",
            "source_msg_id",
            unique=True,
            postgresql_where=text("source_msg_id IS NOT NULL"),
        ),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.jobs.id"), nullable=True
    )
    agreement_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.agreements.id"), nullable=True
    )
    invoice_kind: Mapped[str] = mapped_column(String(16), default="standard")
    status: Mapped[str] = mapped_column(String(16), default="draft")
    subtotal_cents: Mapped[int] = mapped_column(BigInteger)
    tax_cents: Mapped[int] = mapped_column(BigInteger)
    total_cents: Mapped[int] = mapped_column(BigInteger)
    tax_code: Mapped[str] = mapped_column(String(16))
    due_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    line_items: Mapped[list] = mapped_column(JSONB, default=list)
    milestone_label: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_msg_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[dt.datetime] = _created_at()


class PricingItemRecord(Base):
    __tablename__ = "pricing_items"
    __table_args__ = (
        UniqueConstraint("owner_id", "item_name", name="uq_pricing_items_owner_item"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    item_name: Mapped[str] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(String(32), default="each")
    unit_cost_cents: Mapped[int] = mapped_column(BigInteger)
    kind: Mapped[str] = mapped_column(String(32), default="material")
    created_at: Mapped[dt.datetime] = _created_at()


# ── Ledger ───────────────────────────────────────────────────────────────────


class TransactionRecord(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index(
            "uq_transactions_owner_kind_source_msg",
            "owner_id",
            "kind",
            "source_msg_id",
            unique=True,
            postgresql_where=text("source_msg_id IS NOT NULL"),
        ),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(16))  # "expense" | "revenue"
    date: Mapped[dt.date] = mapped_column(Date)
    description: Mapped[str] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(BigInteger)
    source: Mapped[str] = mapped_column(Text, default="Unknown")
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.jobs.id"), nullable=True
    )
    job_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_msg_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[dt.datetime] = _created_at()


class TimeEntryRecord(Base):
    """One punch on the time clock (clock in/out, break, lunch, drive edges)."""

    __tablename__ = "time_entries"
    __table_args__ = (
        Index(
            "uq_time_entries_owner_source_msg",
            "owner_id",
            "source_msg_id",
            unique=True,
            postgresql_where=text("source_msg_id IS NOT NULL"),
        ),
        Index("ix_time_entries_owner_employee_at", "owner_id", "employee_name", "punched_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    employee_name: Mapped[str] = mapped_column(Text)
    action: Mapped[str] = mapped_column(String(16))
    punched_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey(f"{DB_SCHEMA}.jobs.id"), nullable=True
    )
    job_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_msg_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[dt.datetime] = _created_at()
