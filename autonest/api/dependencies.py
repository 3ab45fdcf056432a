"""
FastAPI Dependencies - Authentication, context and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

from autonest.context import AppContext
from autonest.db.session import get_write_db
from autonest.exceptions import AuthenticationError
from autonest.models.domain import AccountData, UserIdentity
from autonest.services.ledger import CreditLedgerService
from autonest.services.tool_runner import ToolRunner

logger = get_logger(__name__)

# Bearer token scheme for Firebase ID tokens
bearer_scheme = HTTPBearer(auto_error=False)

# Cache for verified ID tokens: token -> (identity, expiry_timestamp)
_id_token_cache: dict[str, tuple[UserIdentity, float]] = {}
_MAX_CACHE_SIZE = 10000

# Firebase ID tokens live for one hour
ID_TOKEN_LIFETIME_SECONDS = 3600
# Cached identities are dropped this long before the token expires
ID_TOKEN_EXPIRY_MARGIN_SECONDS = 60


def _cleanup_id_token_cache() -> None:
    """Remove expired entries once the cache is full."""
    if len(_id_token_cache) < _MAX_CACHE_SIZE:
        return

    now = time.time()
    expired = [token for token, (_, expiry) in _id_token_cache.items() if expiry < now]
    for token in expired:
        del _id_token_cache[token]


def get_context(request: Request) -> AppContext:
    """The AppContext built at startup."""
    context: AppContext = request.app.state.context
    return context


def verify_firebase_id_token(token: str, project_id: str) -> tuple[UserIdentity, float]:
    """
    Verify a Firebase ID token against Google's public certificates.

    Returns the identity and the token's `exp` timestamp.

    Blocking: fetches certificates over HTTP on cache miss.

    Raises:
        AuthenticationError: Token invalid, expired, or for another project
    """
    try:
        claims = id_token.verify_firebase_token(  # type: ignore[no-untyped-call]
            token,
            google_requests.Request(),  # type: ignore[no-untyped-call]
            audience=project_id,
        )
    except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
        raise AuthenticationError(str(e)) from e

    if not claims:
        raise AuthenticationError("token could not be verified")

    uid = claims.get("user_id") or claims.get("sub")
    if not uid:
        raise AuthenticationError("missing user id")

    identity = UserIdentity(
        uid=uid,
        email=claims.get("email"),
        name=claims.get("name"),
        picture=claims.get("picture"),
        email_verified=bool(claims.get("email_verified", False)),
    )
    expires_at = float(claims.get("exp", time.time() + ID_TOKEN_LIFETIME_SECONDS))
    return identity, expires_at


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    context: AppContext = Depends(get_context),
) -> UserIdentity:
    """
    Validate the Firebase ID token from the Authorization header.

    Accepts: Authorization: Bearer {firebase_id_token}

    Raises:
        HTTPException 401 if no token or invalid token
        HTTPException 500 if Firebase project is not configured
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials

    cached = _id_token_cache.get(token)
    if cached is not None:
        identity, expiry = cached
        if time.time() < expiry:
            return identity
        del _id_token_cache[token]

    project_id = context.settings.firebase_project_id
    if not project_id:
        logger.error("firebase_project_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: FIREBASE_PROJECT_ID not set",
        )

    try:
        identity, expires_at = await run_in_threadpool(
            verify_firebase_id_token, token, project_id
        )
    except AuthenticationError as e:
        logger.warning("id_token_rejected", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Never cache past the token's own exp
    cache_until = (
        min(expires_at, time.time() + ID_TOKEN_LIFETIME_SECONDS) - ID_TOKEN_EXPIRY_MARGIN_SECONDS
    )
    if cache_until > time.time():
        _cleanup_id_token_cache()
        _id_token_cache[token] = (identity, cache_until)

    return identity


def get_ledger(
    db: AsyncSession = Depends(get_write_db),
    context: AppContext = Depends(get_context),
) -> CreditLedgerService:
    """Ledger bound to the request's session."""
    return CreditLedgerService(
        db,
        gateway=context.gateway,
        run_logger=context.run_logger,
        settings=context.settings,
    )


async def get_current_account(
    identity: UserIdentity = Depends(get_current_identity),
    ledger: CreditLedgerService = Depends(get_ledger),
) -> AccountData:
    """Account of the signed-in user, provisioned on first sign-in."""
    return await ledger.ensure_account(identity)


async def require_admin(
    account: AccountData = Depends(get_current_account),
) -> AccountData:
    """
    Require the signed-in user to be an admin.

    Raises:
        HTTPException(403): If the account is not an admin
    """
    if not account.is_admin:
        logger.warning("admin_access_denied", account_id=account.uid)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return account


def get_tool_runner(
    ledger: CreditLedgerService = Depends(get_ledger),
    context: AppContext = Depends(get_context),
) -> ToolRunner:
    """Tool runner billing through the request's ledger."""
    return ToolRunner(ledger, context.run_logger, context.catalog)
