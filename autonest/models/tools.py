"""
Tool Models - Typed inputs and outputs of the workflow tools.

Outputs double as the validation schema applied to webhook responses.
"""

import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ToolModel(BaseModel):
    """Base for tool payloads; camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Keyword suggestions
# ============================================================================


class KeywordSuggestionInput(ToolModel):
    """Keyword suggestion request."""

    topic: str = Field(..., min_length=3, description="Central topic or seed keyword")
    language: str = Field("en", min_length=2, max_length=10)
    country: str | None = Field(None, max_length=10)


class KeywordSuggestion(ToolModel):
    """One suggested keyword."""

    keyword: str = Field(..., min_length=1)
    potential_use: str | None = Field(None, alias="potentialUse")
    relevance_score: float | None = Field(None, alias="relevanceScore")

    @field_validator("relevance_score")
    @classmethod
    def clamp_relevance(cls, v: float | None) -> float | None:
        """Clamp relevance into [0, 1]."""
        if v is None:
            return None
        return min(1.0, max(0.0, v))


class KeywordSuggestionOutput(ToolModel):
    """Keyword suggestion result."""

    suggestions: list[KeywordSuggestion] = Field(default_factory=list)

    @classmethod
    def salvage(cls, document: dict[str, Any]) -> "KeywordSuggestionOutput":
        """Keep only the suggestions that validate on their own."""
        items = document.get("suggestions")
        if not isinstance(items, list):
            return cls(suggestions=[])

        kept: list[KeywordSuggestion] = []
        for item in items:
            try:
                kept.append(KeywordSuggestion.model_validate(item))
            except ValueError:
                continue
        return cls(suggestions=kept)


# ============================================================================
# Blog factory
# ============================================================================


class BlogFactoryInput(ToolModel):
    """Blog post generation request."""

    research_query: str = Field(..., min_length=10, alias="researchQuery")


class BlogPostOutput(ToolModel):
    """Generated blog post."""

    slug: str
    title: str
    meta: str
    subtitle: str | None = None
    content: str
    hashtags: list[str] = Field(default_factory=list)
    raw_response: str | None = Field(None, alias="rawResponse")

    @model_validator(mode="before")
    @classmethod
    def fill_missing(cls, data: Any) -> Any:
        """Default empty fields the way the blog pipeline expects."""
        if not isinstance(data, dict):
            return data
        filled = dict(data)
        defaults = {
            "slug": f"generated-slug-{int(time.time() * 1000)}",
            "title": "Untitled Post",
            "meta": "No meta description provided.",
            "content": "No content generated.",
        }
        for key, default in defaults.items():
            if not filled.get(key):
                filled[key] = default
        hashtags = filled.get("hashtags")
        filled["hashtags"] = [str(tag) for tag in hashtags] if isinstance(hashtags, list) else []
        return filled


# ============================================================================
# Audio transcription
# ============================================================================


@dataclass(frozen=True)
class AudioUpload:
    """Uploaded audio file forwarded to the transcription webhook."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        """File size in bytes."""
        return len(self.data)


class TranscriptSummary(ToolModel):
    """Summary of a transcribed recording."""

    title: str
    summary: str
    key_points: list[str] = Field(default_factory=list, alias="keyPoints")
    action_items: list[str] = Field(default_factory=list, alias="actionItems")
    transcript: str | None = None


class AudioTranscriptSummaryOutput(ToolModel):
    """Audio transcription result."""

    transcript_summary: TranscriptSummary = Field(..., alias="transcriptSummary")


# ============================================================================
# LinkedIn post
# ============================================================================


class LinkedInPostInput(ToolModel):
    """LinkedIn post generation request."""

    keyword: str | None = Field(None, max_length=200)


class LinkedInPostOutput(ToolModel):
    """Generated LinkedIn post."""

    post_text: str = Field(..., min_length=1, alias="postText")
    suggested_image_prompt: str | None = Field(None, alias="suggestedImagePrompt")
    hashtags: list[str] = Field(default_factory=list)

    @field_validator("post_text")
    @classmethod
    def strip_post_text(cls, v: str) -> str:
        """Reject whitespace-only posts."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("postText must not be blank")
        return stripped
