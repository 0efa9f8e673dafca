"""Per-turn workflow: persist the user's message, analyze it, persist the reply."""

import structlog

from ..domain.errors import AnalysisProviderError, ConversationNotFound
from ..domain.models import AnalysisSummary, PostMessageResult, Role
from ..repositories.base import Repository
from .analysis import SymptomAnalysisEngine
from .profile import build_profile_context

logger = structlog.get_logger()


class MessageOrchestrator:
    """Connects the conversation store to the analysis engine."""

    def __init__(self, repository: Repository, engine: SymptomAnalysisEngine) -> None:
        self.repository = repository
        self.engine = engine

    async def post_user_message(
        self, conversation_id: int, content: str, role: Role = Role.USER
    ) -> PostMessageResult:
        """Append a message and, for user messages, answer it with an analysis.

        The user's message is stored before the engine runs and is kept even
        when the analysis fails; the failure is reported in ``error``.
        Raises ConversationNotFound for an unknown conversation.
        """
        conversation = await self.repository.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)

        message = await self.repository.add_message(conversation_id, role, content)
        if message.role != Role.USER:
            return PostMessageResult(message=message)

        history = [
            {"role": m.role.value, "content": m.content}
            for m in await self.repository.get_messages(conversation_id)
        ]
        profile = await self.repository.get_health_profile(conversation.user_id)

        try:
            result = await self.engine.analyze(
                content, history, build_profile_context(profile)
            )
        except AnalysisProviderError as e:
            logger.error(
                "symptom_analysis_failed",
                conversation_id=conversation_id,
                message_id=message.id,
                error=str(e),
            )
            return PostMessageResult(
                message=message, error=f"Failed to analyze symptoms: {e}"
            )

        try:
            reply, analysis = await self.repository.add_assistant_reply(conversation_id, result)
        except Exception as e:
            logger.error(
                "assistant_reply_store_failed",
                conversation_id=conversation_id,
                message_id=message.id,
                error=str(e),
            )
            return PostMessageResult(
                message=message,
                error=f"Failed to save analysis: {str(e) or type(e).__name__}",
            )

        logger.info(
            "message_processed",
            conversation_id=conversation_id,
            user_message_length=len(content),
            reply_message_id=reply.id,
            analysis_id=analysis.id,
        )
        return PostMessageResult(message=reply, analysis=AnalysisSummary.from_result(result))
