"""
Tool API routes - Catalog and billed runs of the workflow tools.

Every run is billed by ToolRunner: balance check, webhook call, debit,
run log. Failures answer with ErrorResponse bodies.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from autonest.api.dependencies import get_context, get_current_account, get_tool_runner
from autonest.api.errors import to_error_response
from autonest.context import AppContext
from autonest.db.session import get_write_db
from autonest.exceptions import AutoNestError
from autonest.models.api import ErrorResponse, ToolCatalogResponse, ToolResponse, ToolRunResponse
from autonest.models.domain import AccountData
from autonest.models.tools import (
    AudioTranscriptSummaryOutput,
    AudioUpload,
    BlogFactoryInput,
    BlogPostOutput,
    KeywordSuggestionInput,
    KeywordSuggestionOutput,
    LinkedInPostInput,
    LinkedInPostOutput,
)
from autonest.services.run_logger import RunLogQueries
from autonest.services.tool_runner import (
    AUDIO_TOOL_ID,
    BLOG_TOOL_ID,
    KEYWORD_TOOL_ID,
    LINKEDIN_TOOL_ID,
    ToolRunner,
    output_to_document,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api/tools", tags=["tools"])

TOOL_ERRORS: dict[int | str, dict[str, object]] = {
    402: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}

PREVIEW_CHARS = 50


# =============================================================================
# Run summaries
# =============================================================================


def summarize_keywords(topic: str, output: KeywordSuggestionOutput) -> str:
    """Run log summary for keyword suggestions."""
    return f'Generated {len(output.suggestions)} keyword suggestions for "{topic}".'


def summarize_blog_post(output: BlogPostOutput) -> str:
    """Run log summary for a generated blog post."""
    return f'Blog post "{output.title[:PREVIEW_CHARS]}..." generated.'


def summarize_transcript(output: AudioTranscriptSummaryOutput) -> str:
    """Run log summary for an audio transcription."""
    return f'Summary generated: "{output.transcript_summary.title}"'


def summarize_linkedin_post(output: LinkedInPostOutput) -> str:
    """Run log summary for a LinkedIn post."""
    return f"LinkedIn post generated. Preview: {output.post_text[:PREVIEW_CHARS]}..."


# =============================================================================
# Endpoints
# =============================================================================


@router.get("", response_model=ToolCatalogResponse)
async def list_tools(
    account: Annotated[AccountData, Depends(get_current_account)],
    context: Annotated[AppContext, Depends(get_context)],
    db: Annotated[AsyncSession, Depends(get_write_db)],
) -> ToolCatalogResponse:
    """
    List the workflow tools.

    Usage count and last run time are the caller's, taken from the run log.
    """
    usage = await RunLogQueries(db).usage_by_workflow(account.uid)

    tools = []
    for tool in context.catalog.values():
        count, last_run = usage.get(tool.id, (0, None))
        tools.append(
            ToolResponse(
                id=tool.id,
                name=tool.name,
                description=tool.description,
                category=tool.category,
                credit_cost=tool.credit_cost,
                usage_count=count,
                last_run_date=last_run,
            )
        )
    return ToolCatalogResponse(tools=tools)


async def _run(
    runner: ToolRunner,
    account: AccountData,
    tool_id: str,
    invoke: Callable[[], Awaitable[BaseModel]],
    input_details: dict[str, Any],
    summarize: Callable[[Any], str],
) -> ToolRunResponse | JSONResponse:
    try:
        result = await runner.run(account, tool_id, invoke, input_details, summarize)
    except AutoNestError as exc:
        return to_error_response(exc)

    return ToolRunResponse(
        workflow_id=result.tool.id,
        credits_charged=result.credits_charged,
        new_balance=result.new_balance,
        output=output_to_document(result.output),
    )


@router.post("/keyword-suggestions", response_model=ToolRunResponse, responses=TOOL_ERRORS)
async def run_keyword_suggestions(
    request: KeywordSuggestionInput,
    account: Annotated[AccountData, Depends(get_current_account)],
    runner: Annotated[ToolRunner, Depends(get_tool_runner)],
    context: Annotated[AppContext, Depends(get_context)],
) -> ToolRunResponse | JSONResponse:
    """Keyword ideas for a topic."""
    adapter = context.tool_adapter
    return await _run(
        runner,
        account,
        KEYWORD_TOOL_ID,
        lambda: adapter.suggest_keywords(request),
        {"topic": request.topic, "language": request.language, "country": request.country},
        lambda output: summarize_keywords(request.topic, output),
    )


@router.post("/blog-posts", response_model=ToolRunResponse, responses=TOOL_ERRORS)
async def run_blog_factory(
    request: BlogFactoryInput,
    account: Annotated[AccountData, Depends(get_current_account)],
    runner: Annotated[ToolRunner, Depends(get_tool_runner)],
    context: Annotated[AppContext, Depends(get_context)],
) -> ToolRunResponse | JSONResponse:
    """Full blog post from a research query."""
    adapter = context.tool_adapter
    return await _run(
        runner,
        account,
        BLOG_TOOL_ID,
        lambda: adapter.generate_blog_post(request),
        {"researchQuery": request.research_query},
        summarize_blog_post,
    )


@router.post("/audio-transcriptions", response_model=ToolRunResponse, responses=TOOL_ERRORS)
async def run_audio_transcription(
    account: Annotated[AccountData, Depends(get_current_account)],
    runner: Annotated[ToolRunner, Depends(get_tool_runner)],
    context: Annotated[AppContext, Depends(get_context)],
    audio_data: UploadFile = File(..., alias="audioData"),
) -> ToolRunResponse | JSONResponse:
    """Transcript summary of an uploaded recording (multipart field `audioData`)."""
    upload = AudioUpload(
        filename=audio_data.filename or "audio",
        content_type=audio_data.content_type or "application/octet-stream",
        data=await audio_data.read(),
    )
    adapter = context.tool_adapter
    return await _run(
        runner,
        account,
        AUDIO_TOOL_ID,
        lambda: adapter.transcribe_audio(upload),
        {
            "audioFileName": upload.filename,
            "audioFileType": upload.content_type,
            "audioFileSize": upload.size,
        },
        summarize_transcript,
    )


@router.post("/linkedin-posts", response_model=ToolRunResponse, responses=TOOL_ERRORS)
async def run_linkedin_post(
    request: LinkedInPostInput,
    account: Annotated[AccountData, Depends(get_current_account)],
    runner: Annotated[ToolRunner, Depends(get_tool_runner)],
    context: Annotated[AppContext, Depends(get_context)],
) -> ToolRunResponse | JSONResponse:
    """LinkedIn post, optionally around a keyword."""
    adapter = context.tool_adapter
    return await _run(
        runner,
        account,
        LINKEDIN_TOOL_ID,
        lambda: adapter.generate_linkedin_post(request),
        {"linkedinKeyword": request.keyword or ""},
        summarize_linkedin_post,
    )
