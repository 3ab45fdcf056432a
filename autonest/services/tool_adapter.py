"""
Tool Invocation Adapter - Calls the n8n workflow webhooks.

Webhook responses come in several envelopes. Decoding is an explicit step:
each accepted envelope is a named ResponseShape, envelopes are unwrapped with
structural pattern matching in a fixed priority order, and the first
candidate that validates against the tool's output model wins.

This module never touches the ledger or the run log.
"""

import json
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, cast

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from autonest.config import Settings, get_settings
from autonest.exceptions import (
    MalformedUpstreamResponseError,
    OutputValidationError,
    UnrecognizedResponseShapeError,
    UpstreamError,
    UpstreamTimeoutError,
)
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

logger = get_logger(__name__)

MAX_UNWRAP_DEPTH = 4
PREVIEW_LENGTH = 500


class ResponseShape(str, Enum):
    """Accepted webhook response envelopes, in priority order."""

    DIRECT = "direct"  # {...}
    ARRAY_ITEM = "array_item"  # [{...}]
    NESTED_DATA_OUTPUT = "nested_data_output"  # {"data": [{"output": {...}}]}
    CHAT_COMPLETION = "chat_completion"  # {"choices": [{"message": {"content": ...}}]}
    JSON_STRING = "json_string"  # "{\"...\": ...}"


class ValidationPolicy(str, Enum):
    """What to do when a recognized response fails the output schema."""

    STRICT = "strict"  # raise OutputValidationError
    DEGRADE = "degrade"  # return whatever validates, possibly empty


@dataclass(frozen=True)
class Candidate:
    """A value extracted from the response through one envelope."""

    shape: ResponseShape
    value: Any


@dataclass(frozen=True)
class ToolContract:
    """How to recognize and validate one tool's output."""

    name: str
    output_model: type[BaseModel]
    marker_fields: frozenset[str]
    policy: ValidationPolicy = ValidationPolicy.STRICT
    text_field: str | None = None  # Plain chat-completion text maps to this field
    salvage: Callable[[dict[str, Any]], BaseModel] | None = None


@dataclass(frozen=True)
class DecodedOutput:
    """Typed result of decoding a webhook response."""

    shape: ResponseShape
    output: BaseModel
    degraded: bool = False


KEYWORD_CONTRACT = ToolContract(
    name="keyword suggestions",
    output_model=KeywordSuggestionOutput,
    marker_fields=frozenset({"suggestions"}),
    policy=ValidationPolicy.DEGRADE,
    salvage=KeywordSuggestionOutput.salvage,
)

BLOG_CONTRACT = ToolContract(
    name="blog factory",
    output_model=BlogPostOutput,
    marker_fields=frozenset({"slug", "title", "meta", "content"}),
)

AUDIO_CONTRACT = ToolContract(
    name="audio transcription",
    output_model=AudioTranscriptSummaryOutput,
    marker_fields=frozenset({"transcriptSummary"}),
)

LINKEDIN_CONTRACT = ToolContract(
    name="LinkedIn post generator",
    output_model=LinkedInPostOutput,
    marker_fields=frozenset({"postText"}),
    text_field="postText",
)


# ============================================================================
# Decoding
# ============================================================================


def _relabel(candidates: Iterator[Candidate], shape: ResponseShape) -> Iterator[Candidate]:
    """Tag candidates found inside an envelope with that envelope's shape."""
    for candidate in candidates:
        if candidate.shape is ResponseShape.DIRECT:
            yield Candidate(shape, candidate.value)
        else:
            yield candidate


def iter_candidates(payload: Any, depth: int = 0) -> Iterator[Candidate]:
    """Yield every value reachable through the accepted envelopes, in priority order."""
    if depth > MAX_UNWRAP_DEPTH:
        return

    match payload:
        case dict():
            yield Candidate(ResponseShape.DIRECT, payload)
        case [first, *_]:
            yield from _relabel(iter_candidates(first, depth + 1), ResponseShape.ARRAY_ITEM)
        case str():
            try:
                decoded = json.loads(payload)
            except ValueError:
                decoded = None
            if isinstance(decoded, (dict, list)):
                yield from _relabel(iter_candidates(decoded, depth + 1), ResponseShape.JSON_STRING)
            else:
                yield Candidate(ResponseShape.DIRECT, payload)

    match payload:
        case {"data": [{"output": output}, *_]}:
            yield from _relabel(
                iter_candidates(output, depth + 1), ResponseShape.NESTED_DATA_OUTPUT
            )
        case {"choices": [{"message": {"content": content}}, *_]}:
            yield from _relabel(iter_candidates(content, depth + 1), ResponseShape.CHAT_COMPLETION)


def _recognize(contract: ToolContract, candidate: Candidate) -> dict[str, Any] | None:
    """Return the document to validate if the candidate looks like this tool's output."""
    match candidate.value:
        case dict() as document if not contract.marker_fields.isdisjoint(document):
            return document
        case str() as text if (
            contract.text_field
            and candidate.shape is ResponseShape.CHAT_COMPLETION
            and text.strip()
        ):
            return {contract.text_field: text.strip()}
    return None


def _json_preview(payload: Any) -> str:
    try:
        return json.dumps(payload)[:PREVIEW_LENGTH]
    except (TypeError, ValueError):
        return repr(payload)[:PREVIEW_LENGTH]


def _summarize_errors(error: PydanticValidationError) -> str:
    parts = []
    for detail in error.errors()[:5]:
        location = ".".join(str(part) for part in detail["loc"]) or "output"
        parts.append(f"{location}: {detail['msg']}")
    return "; ".join(parts)


def decode_tool_response(payload: Any, contract: ToolContract) -> DecodedOutput:
    """
    Decode parsed webhook JSON into the tool's output model.

    Raises:
        UnrecognizedResponseShapeError: No envelope yields this tool's output
        OutputValidationError: Recognized but invalid, and the policy is STRICT
    """
    rejected: tuple[Candidate, dict[str, Any], PydanticValidationError] | None = None

    for candidate in iter_candidates(payload):
        document = _recognize(contract, candidate)
        if document is None:
            continue
        try:
            output = contract.output_model.model_validate(document)
        except PydanticValidationError as e:
            if rejected is None:
                rejected = (candidate, document, e)
            continue
        return DecodedOutput(shape=candidate.shape, output=output)

    if rejected is None:
        raise UnrecognizedResponseShapeError(_json_preview(payload))

    candidate, document, error = rejected
    if contract.policy is ValidationPolicy.DEGRADE and contract.salvage is not None:
        logger.warning(
            "tool_output_degraded",
            tool=contract.name,
            shape=candidate.shape.value,
            errors=_summarize_errors(error),
        )
        return DecodedOutput(shape=candidate.shape, output=contract.salvage(document), degraded=True)

    raise OutputValidationError(contract.name, _summarize_errors(error))


# ============================================================================
# Adapter
# ============================================================================


class ToolAdapter:
    """Invokes the workflow tool webhooks and returns typed outputs."""

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings | None = None):
        self.http_client = http_client
        self.settings = settings or get_settings()

    async def _invoke(
        self, contract: ToolContract, method: str, url: str, **kwargs: Any
    ) -> tuple[DecodedOutput, str]:
        """Call a webhook, read its body as text, then parse and decode it."""
        timeout = self.settings.tool_timeout_seconds
        start = time.perf_counter()

        logger.info("tool_webhook_request", tool=contract.name, method=method, url=url)

        try:
            response = await self.http_client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("tool_webhook_timeout", tool=contract.name, timeout=timeout)
            raise UpstreamTimeoutError(contract.name, timeout) from e
        except httpx.HTTPError as e:
            logger.error("tool_webhook_unreachable", tool=contract.name, error=str(e))
            raise UpstreamError(502, f"Could not reach {contract.name} webhook: {e}") from e

        body_text = response.text
        logger.info(
            "tool_webhook_response",
            tool=contract.name,
            status=response.status_code,
            content_type=response.headers.get("content-type", "N/A"),
            body_length=len(body_text),
            duration_seconds=time.perf_counter() - start,
        )

        if not response.is_success:
            logger.error(
                "tool_webhook_error",
                tool=contract.name,
                status=response.status_code,
                body_preview=body_text[:PREVIEW_LENGTH],
            )
            raise UpstreamError(response.status_code, body_text)

        try:
            payload = json.loads(body_text)
        except (ValueError, RecursionError) as e:
            logger.error(
                "tool_webhook_malformed_json",
                tool=contract.name,
                body_preview=body_text[:PREVIEW_LENGTH],
            )
            raise MalformedUpstreamResponseError(body_text, str(e)) from e

        decoded = decode_tool_response(payload, contract)
        logger.info(
            "tool_output_decoded",
            tool=contract.name,
            shape=decoded.shape.value,
            degraded=decoded.degraded,
        )
        return decoded, body_text

    async def suggest_keywords(self, request: KeywordSuggestionInput) -> KeywordSuggestionOutput:
        """Keyword ideas for a topic. Invalid output degrades to the valid subset."""
        params = {"topic": request.topic, "language": request.language}
        if request.country:
            params["country"] = request.country

        decoded, _ = await self._invoke(
            KEYWORD_CONTRACT, "GET", self.settings.keyword_tool_url, params=params
        )
        return cast(KeywordSuggestionOutput, decoded.output)

    async def generate_blog_post(self, request: BlogFactoryInput) -> BlogPostOutput:
        """Full blog post for a research query; the raw body is kept for debugging."""
        decoded, body_text = await self._invoke(
            BLOG_CONTRACT,
            "POST",
            self.settings.blog_tool_url,
            json={"Research Query": request.research_query},
            headers={"Accept": "application/json"},
        )
        output = cast(BlogPostOutput, decoded.output)
        return output.model_copy(update={"raw_response": body_text})

    async def transcribe_audio(self, upload: AudioUpload) -> AudioTranscriptSummaryOutput:
        """Transcript summary of an uploaded recording."""
        logger.info(
            "audio_upload_forwarding",
            filename=upload.filename,
            content_type=upload.content_type,
            size=upload.size,
        )
        decoded, _ = await self._invoke(
            AUDIO_CONTRACT,
            "POST",
            self.settings.audio_tool_url,
            files={"audioData": (upload.filename, upload.data, upload.content_type)},
        )
        return cast(AudioTranscriptSummaryOutput, decoded.output)

    async def generate_linkedin_post(self, request: LinkedInPostInput) -> LinkedInPostOutput:
        """LinkedIn post, optionally around a keyword."""
        body = {"keyword": request.keyword} if request.keyword else {}
        decoded, _ = await self._invoke(
            LINKEDIN_CONTRACT,
            "POST",
            self.settings.linkedin_tool_url,
            json=body,
            headers={"Accept": "application/json"},
        )
        return cast(LinkedInPostOutput, decoded.output)
