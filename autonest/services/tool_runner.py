"""
Tool Runner - Billing orchestration around workflow tool calls.

Order of a run: balance pre-check, webhook call, debit, run log.
The balance returned to the client is the one the ledger committed.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from structlog import get_logger

from autonest.config import Settings
from autonest.exceptions import AutoNestError, InsufficientCreditsError, ResourceNotFoundError
from autonest.models.api import RunStatus
from autonest.models.domain import AccountData, RunLogEntry
from autonest.observability.metrics import metrics
from autonest.services.ledger import CreditLedgerService
from autonest.services.run_logger import RunLogger

logger = get_logger(__name__)

KEYWORD_TOOL_ID = "tool-keyword-research"
BLOG_TOOL_ID = "tool-blog-factory"
AUDIO_TOOL_ID = "tool-audio-transcriber"
LINKEDIN_TOOL_ID = "tool-linkedin-post-generator"


@dataclass(frozen=True)
class ToolDefinition:
    """A billable workflow tool."""

    id: str
    name: str
    description: str
    category: str
    credit_cost: int

    def __post_init__(self) -> None:
        """Validate cost."""
        if self.credit_cost < 0:
            raise ValueError(f"Credit cost cannot be negative: {self.credit_cost}")


@dataclass(frozen=True)
class ToolRunResult:
    """Output of a completed run and the committed balance."""

    tool: ToolDefinition
    output: BaseModel
    credits_charged: int
    new_balance: int


def build_catalog(settings: Settings) -> dict[str, ToolDefinition]:
    """The four workflow tools, priced from settings."""
    tools = [
        ToolDefinition(
            id=KEYWORD_TOOL_ID,
            name="Keyword Research Tool",
            description=(
                "Get keyword suggestions for your topic. Provides insights for "
                "content creation and SEO."
            ),
            category="SEO",
            credit_cost=settings.keyword_tool_cost,
        ),
        ToolDefinition(
            id=BLOG_TOOL_ID,
            name="Blog Factory",
            description="Generate a complete, SEO-ready blog post from a research query.",
            category="Content",
            credit_cost=settings.blog_tool_cost,
        ),
        ToolDefinition(
            id=AUDIO_TOOL_ID,
            name="Audio Transcriber & Summarizer",
            description="Upload a recording and get a titled summary with key points.",
            category="Productivity",
            credit_cost=settings.audio_tool_cost,
        ),
        ToolDefinition(
            id=LINKEDIN_TOOL_ID,
            name="LinkedIn Post Generator",
            description="Draft a LinkedIn post with hashtags and an image prompt.",
            category="Social Media",
            credit_cost=settings.linkedin_tool_cost,
        ),
    ]
    return {tool.id: tool for tool in tools}


def output_to_document(output: BaseModel) -> dict[str, Any]:
    """Serialize a tool output the way the client receives it."""
    return output.model_dump(mode="json", by_alias=True, exclude_none=True)


class ToolRunner:
    """Runs a tool for an account and bills it."""

    def __init__(
        self,
        ledger: CreditLedgerService,
        run_logger: RunLogger,
        catalog: dict[str, ToolDefinition],
    ) -> None:
        self.ledger = ledger
        self.run_logger = run_logger
        self.catalog = catalog

    def get_tool(self, tool_id: str) -> ToolDefinition:
        """
        Look up a tool.

        Raises:
            ResourceNotFoundError: Unknown tool id
        """
        tool = self.catalog.get(tool_id)
        if tool is None:
            raise ResourceNotFoundError(f"Tool not found: {tool_id}")
        return tool

    async def run(
        self,
        account: AccountData,
        tool_id: str,
        invoke: Callable[[], Awaitable[BaseModel]],
        input_details: dict[str, Any],
        summarize: Callable[[BaseModel], str],
    ) -> ToolRunResult:
        """
        Run one tool invocation end to end.

        Raises:
            InsufficientCreditsError: Balance below cost; the webhook is not called
            AutoNestError: Upstream or decoding failure; nothing is debited

        Any failure of `invoke` is logged as a Failed run before it propagates.
        """
        tool = self.get_tool(tool_id)

        balance = await self.ledger.get_balance(account.uid)
        if balance < tool.credit_cost:
            metrics.record_tool_run(tool.id, "insufficient_credits", 0.0)
            logger.info(
                "tool_run_rejected_insufficient_credits",
                tool_id=tool.id,
                account_id=account.uid,
                balance=balance,
                required=tool.credit_cost,
            )
            raise InsufficientCreditsError(balance=balance, required=tool.credit_cost)

        start = time.perf_counter()
        try:
            output = await invoke()
        except AutoNestError as e:
            metrics.record_tool_run(tool.id, type(e).__name__, time.perf_counter() - start)
            logger.warning(
                "tool_run_failed",
                tool_id=tool.id,
                account_id=account.uid,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._record(account, tool, input_details, RunStatus.FAILED, error=str(e))
            raise
        except Exception as e:
            metrics.record_tool_run(tool.id, type(e).__name__, time.perf_counter() - start)
            logger.exception(
                "tool_run_crashed",
                tool_id=tool.id,
                account_id=account.uid,
                error_type=type(e).__name__,
            )
            error = str(e) or type(e).__name__
            await self._record(account, tool, input_details, RunStatus.FAILED, error=error)
            raise

        if tool.credit_cost > 0:
            try:
                new_balance = await self.ledger.debit(
                    account.uid, tool.credit_cost, description=f"Tool run: {tool.name}"
                )
            except InsufficientCreditsError as e:
                # Balance drained by a concurrent run after the pre-check
                metrics.record_tool_run(tool.id, "insufficient_credits", time.perf_counter() - start)
                await self._record(account, tool, input_details, RunStatus.FAILED, error=str(e))
                raise
        else:
            new_balance = await self.ledger.get_balance(account.uid)

        metrics.record_tool_run(tool.id, "completed", time.perf_counter() - start)
        logger.info(
            "tool_run_completed",
            tool_id=tool.id,
            account_id=account.uid,
            credits_charged=tool.credit_cost,
            new_balance=new_balance,
        )

        await self._record(
            account,
            tool,
            input_details,
            RunStatus.COMPLETED,
            summary=summarize(output),
            output=output_to_document(output),
        )

        return ToolRunResult(
            tool=tool,
            output=output,
            credits_charged=tool.credit_cost,
            new_balance=new_balance,
        )

    async def _record(
        self,
        account: AccountData,
        tool: ToolDefinition,
        input_details: dict[str, Any],
        status: RunStatus,
        summary: str | None = None,
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        await self.run_logger.record(
            RunLogEntry(
                workflow_id=tool.id,
                workflow_name=tool.name,
                user_id=account.uid,
                user_email=account.email,
                status=status,
                credit_cost_at_run=tool.credit_cost,
                input_details=input_details,
                output_summary=summary,
                full_output=output,
                error_details=error,
            )
        )
