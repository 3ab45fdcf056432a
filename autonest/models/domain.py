"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
Free-form tool input and output payloads are the one exception: they are
stored verbatim in the run log.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from autonest.models.api import RunStatus, SuggestionStatus, TransactionType


@dataclass(frozen=True)
class UserIdentity:
    """Verified identity from a Firebase ID token."""

    uid: str
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    email_verified: bool = False

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if not self.uid:
            raise ValueError("uid cannot be empty")

    @property
    def default_display_name(self) -> str:
        """Display name for a new account: name, else email local part, else 'User'."""
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return "User"


@dataclass(frozen=True)
class AccountData:
    """Account snapshot as read from the ledger store."""

    uid: str
    email: str | None
    display_name: str | None
    photo_url: str | None
    credits: int
    is_admin: bool
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate balance constraint."""
        if self.credits < 0:
            raise ValueError(f"Balance cannot be negative: {self.credits}")


@dataclass(frozen=True)
class LedgerMutation:
    """Outcome of a single committed debit or credit."""

    account_id: str
    transaction_type: TransactionType
    amount: int
    balance_after: int

    @property
    def balance_before(self) -> int:
        """Balance prior to the mutation."""
        if self.transaction_type == TransactionType.DEBIT:
            return self.balance_after + self.amount
        return self.balance_after - self.amount


@dataclass(frozen=True)
class CaptureOutcome:
    """Result of a successful capture-and-credit."""

    capture_id: str
    status: str
    credits_added: int
    new_balance: int


@dataclass(frozen=True)
class RunLogEntry:
    """One workflow run (or purchase) to append to the run log."""

    workflow_id: str
    workflow_name: str
    user_id: str
    status: RunStatus
    credit_cost_at_run: int
    user_email: str | None = None
    input_details: dict[str, Any] = field(default_factory=dict)
    output_summary: str | None = None
    full_output: dict[str, Any] | None = None
    error_details: str | None = None

    def __post_init__(self) -> None:
        """Validate run outcome fields."""
        if self.credit_cost_at_run < 0:
            raise ValueError(f"Credit cost cannot be negative: {self.credit_cost_at_run}")
        if self.status == RunStatus.FAILED and not self.error_details:
            raise ValueError("Failed runs must carry error_details")


@dataclass(frozen=True)
class ToolSuggestionData:
    """A tool suggestion as stored."""

    id: str
    tool_name: str
    description: str
    category: str | None
    user_email: str | None
    user_id: str | None
    submitted_at: datetime
    status: SuggestionStatus
