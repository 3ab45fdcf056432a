"""
Tool Suggestion Service - User submissions and admin review.

Suggestions are append-only; only `status` changes after creation.
"""

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from autonest.db.models import ToolSuggestion, utc_now
from autonest.exceptions import ResourceNotFoundError
from autonest.models.api import SuggestionStatus
from autonest.models.domain import ToolSuggestionData, UserIdentity

logger = get_logger(__name__)


class ToolSuggestionService:
    """Stores and reviews tool suggestions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def submit(
        self,
        tool_name: str,
        description: str,
        category: str | None,
        identity: UserIdentity,
    ) -> ToolSuggestionData:
        """Create a suggestion with status New."""
        suggestion = ToolSuggestion(
            id=uuid4(),
            tool_name=tool_name,
            description=description,
            category=category or None,
            user_email=identity.email,
            user_id=identity.uid,
            submitted_at=utc_now(),
            status=SuggestionStatus.NEW,
        )
        self.session.add(suggestion)
        await self.session.commit()

        logger.info(
            "tool_suggestion_submitted",
            suggestion_id=str(suggestion.id),
            tool_name=tool_name,
            user_id=identity.uid,
        )
        return self._to_domain(suggestion)

    async def list_suggestions(
        self,
        status: SuggestionStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ToolSuggestionData], int]:
        """Newest suggestions first, with the total count."""
        query = select(ToolSuggestion)
        count_query = select(func.count()).select_from(ToolSuggestion)
        if status is not None:
            query = query.where(ToolSuggestion.status == status)
            count_query = count_query.where(ToolSuggestion.status == status)

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(
            query.order_by(ToolSuggestion.submitted_at.desc()).offset(offset).limit(limit)
        )
        return [self._to_domain(row) for row in result.scalars().all()], total

    async def update_status(
        self, suggestion_id: UUID, status: SuggestionStatus, admin_id: str
    ) -> ToolSuggestionData:
        """
        Change a suggestion's review status.

        Raises:
            ResourceNotFoundError: Unknown suggestion id
        """
        suggestion = await self.session.get(ToolSuggestion, suggestion_id)
        if suggestion is None:
            raise ResourceNotFoundError(f"Suggestion not found: {suggestion_id}")

        previous = suggestion.status
        suggestion.status = status
        suggestion.status_updated_at = utc_now()
        await self.session.commit()

        logger.info(
            "tool_suggestion_status_updated",
            suggestion_id=str(suggestion_id),
            previous_status=previous.value if previous else None,
            status=status.value,
            admin_id=admin_id,
        )
        return self._to_domain(suggestion)

    @staticmethod
    def _to_domain(suggestion: ToolSuggestion) -> ToolSuggestionData:
        return ToolSuggestionData(
            id=str(suggestion.id),
            tool_name=suggestion.tool_name,
            description=suggestion.description,
            category=suggestion.category,
            user_email=suggestion.user_email,
            user_id=suggestion.user_id,
            submitted_at=suggestion.submitted_at,
            status=suggestion.status,
        )
