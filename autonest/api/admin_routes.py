"""
Admin API routes - Users, tool suggestions, run logs and manual credits.

Protected by Firebase authentication. Requires an account with is_admin.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from autonest.api.dependencies import get_ledger, require_admin
from autonest.api.routes import run_to_response, suggestion_to_response
from autonest.db.models import Account
from autonest.db.session import get_write_db
from autonest.exceptions import AccountNotFoundError, ResourceNotFoundError
from autonest.models.api import (
    AdminUserListResponse,
    AdminUserResponse,
    ManualCreditRequest,
    ManualCreditResponse,
    RunLogListResponse,
    RunStatus,
    SuggestionStatus,
    SuggestionStatusUpdateRequest,
    ToolSuggestionListResponse,
    ToolSuggestionResponse,
)
from autonest.models.domain import AccountData
from autonest.services.ledger import CreditLedgerService
from autonest.services.run_logger import RunLogQueries
from autonest.services.suggestions import ToolSuggestionService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Users
# ============================================================================


@router.get("/users", response_model=AdminUserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, alias="pageSize", description="Items per page"),
    search: str | None = Query(None, description="Search by email or display name"),
    db: AsyncSession = Depends(get_write_db),
    admin: AccountData = Depends(require_admin),
) -> AdminUserListResponse:
    """List accounts, newest first."""
    offset = (page - 1) * page_size

    stmt = select(Account)
    if search:
        search_pattern = f"%{search}%"
        stmt = stmt.where(
            (Account.email.ilike(search_pattern)) | (Account.display_name.ilike(search_pattern))
        )

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = stmt.order_by(Account.created_at.desc()).offset(offset).limit(page_size)
    accounts = (await db.execute(stmt)).scalars().all()

    return AdminUserListResponse(
        users=[
            AdminUserResponse(
                uid=account.id,
                email=account.email,
                display_name=account.display_name,
                credits=account.credits,
                is_admin=account.is_admin,
                created_at=account.created_at,
            )
            for account in accounts
        ],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/users/{uid}/credits", response_model=ManualCreditResponse)
async def add_manual_credits(
    uid: str,
    request: ManualCreditRequest,
    ledger: CreditLedgerService = Depends(get_ledger),
    admin: AccountData = Depends(require_admin),
) -> ManualCreditResponse:
    """
    Credit an account by hand.

    Used to settle payments that were captured but never credited: pass the
    PayPal capture id as `reference`.
    """
    try:
        new_balance = await ledger.credit(
            uid,
            request.amount,
            description=f"Manual credit by {admin.uid}: {request.reason}",
            reference=request.reference,
        )
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    logger.info(
        "manual_credit_applied",
        admin_id=admin.uid,
        account_id=uid,
        amount=request.amount,
        reference=request.reference,
        new_balance=new_balance,
    )
    return ManualCreditResponse(uid=uid, credits_added=request.amount, new_balance=new_balance)


# ============================================================================
# Tool suggestions
# ============================================================================


@router.get("/suggestions", response_model=ToolSuggestionListResponse)
async def list_suggestions(
    status_filter: SuggestionStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_write_db),
    admin: AccountData = Depends(require_admin),
) -> ToolSuggestionListResponse:
    """Tool suggestions, newest first."""
    suggestions, total = await ToolSuggestionService(db).list_suggestions(
        status_filter, limit, offset
    )
    return ToolSuggestionListResponse(
        suggestions=[suggestion_to_response(s) for s in suggestions],
        total=total,
    )


@router.patch("/suggestions/{suggestion_id}", response_model=ToolSuggestionResponse)
async def update_suggestion_status(
    suggestion_id: UUID,
    request: SuggestionStatusUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AccountData = Depends(require_admin),
) -> ToolSuggestionResponse:
    """Move a suggestion through review."""
    try:
        suggestion = await ToolSuggestionService(db).update_status(
            suggestion_id, request.status, admin.uid
        )
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    return suggestion_to_response(suggestion)


# ============================================================================
# Run logs
# ============================================================================


@router.get("/runs", response_model=RunLogListResponse)
async def list_runs(
    status_filter: RunStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_write_db),
    admin: AccountData = Depends(require_admin),
) -> RunLogListResponse:
    """Workflow runs and purchases across all users, newest first."""
    runs, total = await RunLogQueries(db).list_recent(limit, offset, status_filter)
    return RunLogListResponse(
        runs=[run_to_response(run) for run in runs],
        total=total,
    )
