"""
API Routes - Payment, account and suggestion endpoints for the web client.

NO DICTIONARIES - All requests/responses use Pydantic models.

Auth: Authorization: Bearer {firebase_id_token}
"""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from autonest.api.dependencies import (
    get_current_account,
    get_current_identity,
    get_ledger,
)
from autonest.api.errors import error_response, to_error_response
from autonest.db.models import WorkflowRunLog
from autonest.db.session import get_write_db
from autonest.exceptions import AutoNestError
from autonest.models.api import (
    AccountResponse,
    CapturePaymentRequest,
    CapturePaymentResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    ErrorResponse,
    RunLogListResponse,
    RunLogResponse,
    ToolSuggestionRequest,
    ToolSuggestionResponse,
)
from autonest.models.domain import AccountData, ToolSuggestionData, UserIdentity
from autonest.services.ledger import CreditLedgerService
from autonest.services.run_logger import RunLogQueries
from autonest.services.suggestions import ToolSuggestionService

logger = get_logger(__name__)
router = APIRouter(prefix="/api")

PAYMENT_ERRORS: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


def run_to_response(run: WorkflowRunLog) -> RunLogResponse:
    """Convert a run log row to its API model."""
    return RunLogResponse(
        id=str(run.id),
        workflow_id=run.workflow_id,
        workflow_name=run.workflow_name,
        user_id=run.user_id,
        user_email=run.user_email,
        timestamp=run.timestamp,
        status=run.status,
        credit_cost_at_run=run.credit_cost_at_run,
        input_details=run.input_details or {},
        output_summary=run.output_summary,
        full_output=run.full_output,
        error_details=run.error_details,
    )


def suggestion_to_response(suggestion: ToolSuggestionData) -> ToolSuggestionResponse:
    """Convert a stored suggestion to its API model."""
    return ToolSuggestionResponse(
        id=suggestion.id,
        tool_name=suggestion.tool_name,
        description=suggestion.description,
        category=suggestion.category,
        user_email=suggestion.user_email,
        user_id=suggestion.user_id,
        submitted_at=suggestion.submitted_at,
        status=suggestion.status,
    )


# =============================================================================
# Payments
# =============================================================================


@router.post(
    "/payment/create-order",
    response_model=CreateOrderResponse,
    responses=PAYMENT_ERRORS,
)
async def create_order(
    request: CreateOrderRequest,
    account: AccountData = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_ledger),
) -> CreateOrderResponse | JSONResponse:
    """
    Create a PayPal order for a credit purchase.

    The amount must equal the price of `creditsToPurchase`. No credits are
    granted here; see capture-payment.
    """
    try:
        order = await ledger.create_order(request.amount, request.credits_to_purchase)
    except AutoNestError as exc:
        logger.warning(
            "create_order_failed",
            account_id=account.uid,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return to_error_response(exc)

    return CreateOrderResponse(order_id=order.order_id)


@router.post(
    "/payment/capture-payment",
    response_model=CapturePaymentResponse,
    responses=PAYMENT_ERRORS,
)
async def capture_payment(
    request: CapturePaymentRequest,
    account: AccountData = Depends(get_current_account),
    ledger: CreditLedgerService = Depends(get_ledger),
) -> CapturePaymentResponse | JSONResponse:
    """
    Capture an approved PayPal order and credit the buyer.

    Not idempotent: call once per approved order. A 500 carrying
    `paypalCaptureId` means the payment was taken but credits were not
    applied; a 409 carrying it means the captured amount does not pay for
    `creditsToPurchase`. Operators resolve both through the admin credit
    endpoint.
    """
    if request.user_uid != account.uid:
        logger.warning(
            "capture_payment_uid_mismatch",
            account_id=account.uid,
            requested_uid=request.user_uid,
        )
        return error_response(
            status.HTTP_403_FORBIDDEN,
            ErrorResponse(
                error="userUID does not match the signed-in user.",
                details=None,
            ),
        )

    try:
        outcome = await ledger.capture_and_credit(
            request.order_id,
            request.credits_to_purchase,
            account.uid,
            user_email=account.email,
        )
    except AutoNestError as exc:
        logger.warning(
            "capture_payment_failed",
            account_id=account.uid,
            order_id=request.order_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return to_error_response(exc)

    return CapturePaymentResponse(
        message="Payment captured successfully and credits updated on server.",
        paypal_capture_id=outcome.capture_id,
        status=outcome.status,
        new_balance=outcome.new_balance,
    )


# =============================================================================
# Account
# =============================================================================


@router.get("/account", response_model=AccountResponse)
async def get_account(
    identity: UserIdentity = Depends(get_current_identity),
    account: AccountData = Depends(get_current_account),
) -> AccountResponse:
    """
    Profile and server-authoritative credit balance.

    Provisions the account with the welcome credits on first call.
    """
    return AccountResponse(
        uid=account.uid,
        email=account.email,
        display_name=account.display_name,
        photo_url=account.photo_url,
        credits=account.credits,
        is_admin=account.is_admin,
        email_verified=identity.email_verified,
        created_at=account.created_at,
    )


@router.get("/account/runs", response_model=RunLogListResponse)
async def list_account_runs(
    workflow_id: str | None = Query(None, alias="workflowId"),
    limit: int = Query(50, ge=1, le=200),
    account: AccountData = Depends(get_current_account),
    db: AsyncSession = Depends(get_write_db),
) -> RunLogListResponse:
    """Run history of the signed-in user, newest first."""
    runs = await RunLogQueries(db).list_for_account(account.uid, workflow_id, limit)
    return RunLogListResponse(
        runs=[run_to_response(run) for run in runs],
        total=len(runs),
    )


# =============================================================================
# Tool suggestions
# =============================================================================


@router.post(
    "/suggestions",
    response_model=ToolSuggestionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_suggestion(
    request: ToolSuggestionRequest,
    identity: UserIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_write_db),
) -> ToolSuggestionResponse:
    """Suggest a new workflow tool. Stored with status New."""
    suggestion = await ToolSuggestionService(db).submit(
        request.tool_name,
        request.description,
        request.category,
        identity,
    )
    return suggestion_to_response(suggestion)
