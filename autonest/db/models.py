"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Run log payloads are the exception: tool input and output are stored as JSON.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from autonest.models.api import RunStatus, SuggestionStatus, TransactionType

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Account(Base):
    """
    ORM model for accounts table.

    One row per identity-provider subject. `credits` is only ever changed
    by single-statement increments/decrements in CreditLedgerService.
    """

    __tablename__ = "accounts"

    # Primary Key - Firebase uid
    id: Mapped[str] = mapped_column(String(128), primary_key=True)

    # Profile
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Balance
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Role
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_credits_non_negative"),
        Index("idx_accounts_created_at", "created_at"),
        Index("idx_accounts_email", "email"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, email={self.email}, credits={self.credits})>"


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Immutable ledger of every debit, credit and purchase.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    account_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    transaction_type: Mapped[TransactionType] = mapped_column(
        _enum_column(TransactionType, "transaction_type"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Balance snapshots (denormalized for auditing)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # External reference (PayPal capture id, operator note reference)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        CheckConstraint("balance_after >= 0", name="ck_transaction_balance_non_negative"),
        Index("idx_credit_transactions_created_at", "created_at"),
        Index("idx_credit_transactions_reference", "external_reference"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, account_id={self.account_id}, "
            f"type={self.transaction_type}, amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )


class WorkflowRunLog(Base):
    """
    ORM model for workflow_run_logs table.

    Append-only record of every tool run and purchase attempt.
    """

    __tablename__ = "workflow_run_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    workflow_id: Mapped[str] = mapped_column(String(100), nullable=False)
    workflow_name: Mapped[str] = mapped_column(String(255), nullable=False)

    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    status: Mapped[RunStatus] = mapped_column(_enum_column(RunStatus, "run_status"), nullable=False)

    # Cost captured at execution time
    credit_cost_at_run: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    input_details: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict
    )
    output_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_output: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_run_logs_workflow_user_time", "workflow_id", "user_id", "timestamp"),
        Index("idx_run_logs_user_time", "user_id", "timestamp"),
        Index("idx_run_logs_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<WorkflowRunLog(id={self.id}, workflow_id={self.workflow_id}, "
            f"user_id={self.user_id}, status={self.status})>"
        )


class ToolSuggestion(Base):
    """
    ORM model for tool_suggestions table.

    Submitted by users; only `status` changes afterwards, by admins.
    """

    __tablename__ = "tool_suggestions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tool_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    status: Mapped[SuggestionStatus] = mapped_column(
        _enum_column(SuggestionStatus, "suggestion_status"),
        nullable=False,
        default=SuggestionStatus.NEW,
    )
    status_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_tool_suggestions_status", "status"),
        Index("idx_tool_suggestions_submitted_at", "submitted_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ToolSuggestion(id={self.id}, tool_name={self.tool_name}, status={self.status})>"
