"""In-memory repository implementation."""

import asyncio
import itertools
from typing import Dict, List, Optional, Tuple

import structlog

from ..domain.errors import ConversationNotFound, EmailAlreadyRegistered, InvalidAnalysisTarget
from ..domain.models import (
    Analysis,
    AnalysisResult,
    Conversation,
    HealthProfile,
    Message,
    Role,
    User,
)
from .base import Repository

logger = structlog.get_logger()


class InMemoryRepository(Repository):
    """Process-local repository guarded by a single asyncio lock."""

    def __init__(self) -> None:
        self._users: Dict[int, User] = {}
        self._profiles: Dict[int, HealthProfile] = {}
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, List[Message]] = {}
        self._analyses: Dict[int, List[Analysis]] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("user", "conversation", "message", "analysis")
        }
        self._async_lock = asyncio.Lock()
        logger.info("repository_initialized", backend="memory")

    def _next_id(self, name: str) -> int:
        return next(self._ids[name])

    async def create_user(
        self, email: str, password_hash: str, first_name: str, last_name: str
    ) -> User:
        email = email.strip().lower()
        async with self._async_lock:
            if any(u.email == email for u in self._users.values()):
                raise EmailAlreadyRegistered(email)
            user = User(
                id=self._next_id("user"),
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
            )
            self._users[user.id] = user
            logger.info("user_created", user_id=user.id)
            return user

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._async_lock:
            return self._users.get(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        async with self._async_lock:
            return next((u for u in self._users.values() if u.email == email), None)

    async def get_health_profile(self, user_id: int) -> Optional[HealthProfile]:
        async with self._async_lock:
            return self._profiles.get(user_id)

    async def save_health_profile(self, profile: HealthProfile) -> HealthProfile:
        async with self._async_lock:
            self._profiles[profile.user_id] = profile
            return profile

    async def create_conversation(self, user_id: int, title: str) -> Conversation:
        async with self._async_lock:
            conversation = Conversation(
                id=self._next_id("conversation"), user_id=user_id, title=title
            )
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            self._analyses[conversation.id] = []
            logger.info("conversation_created", conversation_id=conversation.id)
            return conversation

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        async with self._async_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id)
            return conversation

    async def list_conversations(
        self, user_id: int, limit: int = 100, offset: int = 0
    ) -> List[Conversation]:
        async with self._async_lock:
            conversations = sorted(
                (c for c in self._conversations.values() if c.user_id == user_id),
                key=lambda c: (c.created_at, c.id),
                reverse=True,
            )
            return conversations[offset : offset + limit]

    async def update_conversation_title(
        self, conversation_id: int, title: str
    ) -> Conversation:
        async with self._async_lock:
            conversation = self._require_conversation(conversation_id)
            renamed = conversation.model_copy(update={"title": title})
            self._conversations[conversation_id] = renamed
            return renamed

    async def add_message(self, conversation_id: int, role: Role, content: str) -> Message:
        async with self._async_lock:
            self._require_conversation(conversation_id)
            message = self._append_message(conversation_id, role, content)
            return message

    async def get_messages(
        self, conversation_id: int, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        async with self._async_lock:
            self._require_conversation(conversation_id)
            messages = self._messages[conversation_id]
            end = None if limit is None else offset + limit
            return list(messages[offset:end])

    async def add_analysis(
        self, conversation_id: int, message_id: int, result: AnalysisResult
    ) -> Analysis:
        async with self._async_lock:
            self._require_conversation(conversation_id)
            return self._insert_analysis(conversation_id, message_id, result)

    async def add_assistant_reply(
        self, conversation_id: int, result: AnalysisResult
    ) -> Tuple[Message, Analysis]:
        async with self._async_lock:
            self._require_conversation(conversation_id)
            message = self._append_message(conversation_id, Role.ASSISTANT, result.message)
            analysis = self._insert_analysis(conversation_id, message.id, result)
            return message, analysis

    async def get_analyses(self, conversation_id: int) -> List[Analysis]:
        async with self._async_lock:
            self._require_conversation(conversation_id)
            return sorted(
                self._analyses[conversation_id],
                key=lambda a: (a.created_at, a.id),
                reverse=True,
            )

    def _require_conversation(self, conversation_id: int) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            logger.error("conversation_not_found", conversation_id=conversation_id)
            raise ConversationNotFound(conversation_id)
        return conversation

    def _append_message(self, conversation_id: int, role: Role, content: str) -> Message:
        message = Message(
            id=self._next_id("message"),
            conversation_id=conversation_id,
            role=role,
            content=content,
        )
        self._messages[conversation_id].append(message)
        logger.info(
            "message_added",
            conversation_id=conversation_id,
            message_role=message.role.value,
        )
        return message

    def _insert_analysis(
        self, conversation_id: int, message_id: int, result: AnalysisResult
    ) -> Analysis:
        target = next(
            (m for m in self._messages[conversation_id] if m.id == message_id), None
        )
        if target is None or target.role != Role.ASSISTANT:
            raise InvalidAnalysisTarget(
                f"Message {message_id} is not an assistant message of conversation {conversation_id}"
            )
        analysis = Analysis(
            id=self._next_id("analysis"),
            conversation_id=conversation_id,
            message_id=message_id,
            urgency_level=result.urgency,
            conditions=result.conditions,
            suggestions=result.suggestions,
            specialty=result.specialty,
        )
        self._analyses[conversation_id].append(analysis)
        logger.info(
            "analysis_added",
            conversation_id=conversation_id,
            message_id=message_id,
            urgency_level=analysis.urgency_level.value,
        )
        return analysis
