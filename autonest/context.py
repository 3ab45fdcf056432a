"""
Application Context - Process-wide handles built once at startup.

Routes receive these through FastAPI dependencies instead of importing
module-level singletons.
"""

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from structlog import get_logger

from autonest.config import Settings
from autonest.db.session import build_engine, build_session_factory
from autonest.exceptions import ConfigurationError
from autonest.observability.tracing import instrument_sqlalchemy
from autonest.services.payment_provider import PaymentGateway
from autonest.services.paypal_provider import PayPalProvider
from autonest.services.run_logger import RunLogger
from autonest.services.tool_adapter import ToolAdapter
from autonest.services.tool_runner import ToolDefinition, build_catalog

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Everything a request needs that outlives the request."""

    settings: Settings
    engine: AsyncEngine | None
    session_factory: async_sessionmaker[AsyncSession] | None
    gateway: PaymentGateway
    tool_http_client: httpx.AsyncClient
    catalog: dict[str, ToolDefinition]

    def sessions(self) -> async_sessionmaker[AsyncSession]:
        """
        Session factory for the ledger store.

        Raises:
            ConfigurationError: If DATABASE_URL was not set at startup
        """
        if self.session_factory is None:
            raise ConfigurationError("DATABASE_URL")
        return self.session_factory

    @property
    def run_logger(self) -> RunLogger:
        """Run logger writing through its own sessions."""
        return RunLogger(self.sessions())

    @property
    def tool_adapter(self) -> ToolAdapter:
        """Webhook adapter sharing the context's HTTP client."""
        return ToolAdapter(self.tool_http_client, self.settings)

    async def close(self) -> None:
        """Release HTTP clients and database connections."""
        await self.tool_http_client.aclose()
        if isinstance(self.gateway, PayPalProvider):
            await self.gateway.close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("app_context_closed")


def build_context(settings: Settings) -> AppContext:
    """
    Build the application context from settings.

    Missing credentials do not stop startup; the operations that need
    them raise ConfigurationError when called.
    """
    engine = None
    session_factory = None
    if settings.database_url:
        engine = build_engine(settings)
        instrument_sqlalchemy(engine)
        session_factory = build_session_factory(engine)
    else:
        logger.error("database_not_configured", setting="DATABASE_URL")

    gateway = PayPalProvider(
        client_id=settings.paypal_client_id,
        client_secret=settings.paypal_client_secret,
        base_url=settings.paypal_base_url,
        timeout_seconds=settings.http_timeout_seconds,
    )

    context = AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        tool_http_client=httpx.AsyncClient(timeout=settings.tool_timeout_seconds),
        catalog=build_catalog(settings),
    )
    logger.info(
        "app_context_built",
        database_configured=session_factory is not None,
        paypal_environment=settings.paypal_environment,
        paypal_configured=bool(settings.paypal_client_id and settings.paypal_client_secret),
        tools=len(context.catalog),
    )
    return context
