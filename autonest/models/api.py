"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire names follow the web client (camelCase) through field aliases.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# "Manual credit by {uid}: {reason}" must fit credit_transactions.description (500)
# with a uid of up to 128 characters
MANUAL_CREDIT_REASON_MAX_LENGTH = 350


class TransactionType(str, Enum):
    """Credit ledger transaction type enumeration."""

    DEBIT = "debit"
    CREDIT = "credit"
    PURCHASE = "purchase"


class RunStatus(str, Enum):
    """Workflow run outcome."""

    COMPLETED = "Completed"
    FAILED = "Failed"


class SuggestionStatus(str, Enum):
    """Tool suggestion review status."""

    NEW = "New"
    REVIEWED = "Reviewed"
    PLANNED = "Planned"
    IMPLEMENTED = "Implemented"
    REJECTED = "Rejected"


class WireModel(BaseModel):
    """Base for models exchanged with the web client."""

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(WireModel):
    """Error body returned by payment and tool endpoints."""

    error: str
    details: str | None = None
    paypal_capture_id: str | None = Field(None, alias="paypalCaptureId")
    is_instrument_declined: bool | None = Field(None, alias="isInstrumentDeclined")


# ============================================================================
# Payment Models
# ============================================================================


class CreateOrderRequest(WireModel):
    """POST /api/payment/create-order request body."""

    amount: Decimal = Field(..., gt=0, description="Dollar amount, e.g. 10.00")
    credits_to_purchase: int = Field(..., gt=0, alias="creditsToPurchase")


class CreateOrderResponse(WireModel):
    """POST /api/payment/create-order response."""

    order_id: str = Field(..., alias="orderId")


class CapturePaymentRequest(WireModel):
    """POST /api/payment/capture-payment request body."""

    order_id: str = Field(..., min_length=1, alias="orderId")
    credits_to_purchase: int = Field(..., gt=0, alias="creditsToPurchase")
    user_uid: str = Field(..., min_length=1, alias="userUID")


class CapturePaymentResponse(WireModel):
    """POST /api/payment/capture-payment success response."""

    message: str
    paypal_capture_id: str = Field(..., alias="paypalCaptureId")
    status: str
    new_balance: int = Field(..., alias="newBalance")


# ============================================================================
# Account Models
# ============================================================================


class AccountResponse(WireModel):
    """Profile and server-authoritative balance of the signed-in user."""

    uid: str
    email: str | None
    display_name: str | None = Field(None, alias="displayName")
    photo_url: str | None = Field(None, alias="photoURL")
    credits: int
    is_admin: bool = Field(..., alias="isAdmin")
    email_verified: bool = Field(..., alias="emailVerified")
    created_at: datetime = Field(..., alias="createdAt")


class RunLogResponse(WireModel):
    """A single workflow run log entry."""

    id: str
    workflow_id: str = Field(..., alias="workflowId")
    workflow_name: str = Field(..., alias="workflowName")
    user_id: str = Field(..., alias="userId")
    user_email: str | None = Field(None, alias="userEmail")
    timestamp: datetime
    status: RunStatus
    credit_cost_at_run: int = Field(..., alias="creditCostAtRun")
    input_details: dict[str, Any] = Field(default_factory=dict, alias="inputDetails")
    output_summary: str | None = Field(None, alias="outputSummary")
    full_output: dict[str, Any] | None = Field(None, alias="fullOutput")
    error_details: str | None = Field(None, alias="errorDetails")


class RunLogListResponse(WireModel):
    """List of run log entries."""

    runs: list[RunLogResponse]
    total: int


# ============================================================================
# Tool Catalog Models
# ============================================================================


class ToolResponse(WireModel):
    """A workflow tool as shown in the catalog."""

    id: str
    name: str
    description: str
    category: str
    credit_cost: int = Field(..., alias="creditCost")
    usage_count: int = Field(0, alias="usageCount")
    last_run_date: datetime | None = Field(None, alias="lastRunDate")


class ToolCatalogResponse(WireModel):
    """GET /api/tools response."""

    tools: list[ToolResponse]


class ToolRunResponse(WireModel):
    """Result of a billed tool run with the balance after the debit."""

    workflow_id: str = Field(..., alias="workflowId")
    credits_charged: int = Field(..., alias="creditsCharged")
    new_balance: int = Field(..., alias="newBalance")
    output: dict[str, Any]


# ============================================================================
# Tool Suggestion Models
# ============================================================================


class ToolSuggestionRequest(WireModel):
    """POST /api/suggestions request body."""

    tool_name: str = Field(..., min_length=3, max_length=100, alias="toolName")
    description: str = Field(..., min_length=10, max_length=2000)
    category: str | None = Field(None, max_length=100)

    @field_validator("tool_name", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Reject whitespace-only text."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class ToolSuggestionResponse(WireModel):
    """A stored tool suggestion."""

    id: str
    tool_name: str = Field(..., alias="toolName")
    description: str
    category: str | None = None
    user_email: str | None = Field(None, alias="userEmail")
    user_id: str | None = Field(None, alias="userId")
    submitted_at: datetime = Field(..., alias="submittedAt")
    status: SuggestionStatus


class ToolSuggestionListResponse(WireModel):
    """List of tool suggestions."""

    suggestions: list[ToolSuggestionResponse]
    total: int


class SuggestionStatusUpdateRequest(WireModel):
    """PATCH /admin/suggestions/{id} request body."""

    status: SuggestionStatus


# ============================================================================
# Admin Models
# ============================================================================


class AdminUserResponse(WireModel):
    """User row in the admin dashboard."""

    uid: str
    email: str | None
    display_name: str | None = Field(None, alias="displayName")
    credits: int
    is_admin: bool = Field(..., alias="isAdmin")
    created_at: datetime = Field(..., alias="createdAt")


class AdminUserListResponse(WireModel):
    """Paginated user list."""

    users: list[AdminUserResponse]
    total: int
    page: int
    page_size: int = Field(..., alias="pageSize")


class ManualCreditRequest(WireModel):
    """POST /admin/users/{uid}/credits request body."""

    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=3, max_length=MANUAL_CREDIT_REASON_MAX_LENGTH)
    reference: str | None = Field(
        None, max_length=255, description="PayPal capture id when reconciling a purchase"
    )


class ManualCreditResponse(WireModel):
    """Result of an operator credit."""

    uid: str
    credits_added: int = Field(..., alias="creditsAdded")
    new_balance: int = Field(..., alias="newBalance")
