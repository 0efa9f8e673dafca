"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..domain.models import (
    Analysis,
    AnalysisResult,
    Conversation,
    HealthProfile,
    Message,
    Role,
    User,
)


class Repository(ABC):
    """Abstract base class for repositories."""

    async def init(self) -> None:
        """Prepare the backing storage."""

    async def close(self) -> None:
        """Release the backing storage."""

    # Users

    @abstractmethod
    async def create_user(
        self, email: str, password_hash: str, first_name: str, last_name: str
    ) -> User:
        """Create a user; raises EmailAlreadyRegistered on a duplicate email."""
        pass

    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    # Health profiles

    @abstractmethod
    async def get_health_profile(self, user_id: int) -> Optional[HealthProfile]:
        pass

    @abstractmethod
    async def save_health_profile(self, profile: HealthProfile) -> HealthProfile:
        """Insert or replace the profile of profile.user_id."""
        pass

    # Conversations

    @abstractmethod
    async def create_conversation(self, user_id: int, title: str) -> Conversation:
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    async def list_conversations(
        self, user_id: int, limit: int = 100, offset: int = 0
    ) -> List[Conversation]:
        """List a user's conversations, newest first."""
        pass

    @abstractmethod
    async def update_conversation_title(
        self, conversation_id: int, title: str
    ) -> Conversation:
        """Rename a conversation; raises ConversationNotFound."""
        pass

    # Messages

    @abstractmethod
    async def add_message(self, conversation_id: int, role: Role, content: str) -> Message:
        """Append a message; raises ConversationNotFound."""
        pass

    @abstractmethod
    async def get_messages(
        self, conversation_id: int, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        """Messages of a conversation in creation order; raises ConversationNotFound."""
        pass

    # Analyses

    @abstractmethod
    async def add_analysis(
        self, conversation_id: int, message_id: int, result: AnalysisResult
    ) -> Analysis:
        """Attach an analysis to an assistant message of the same conversation.

        Raises InvalidAnalysisTarget when message_id is not such a message.
        """
        pass

    @abstractmethod
    async def add_assistant_reply(
        self, conversation_id: int, result: AnalysisResult
    ) -> Tuple[Message, Analysis]:
        """Write the assistant message and its analysis as one unit."""
        pass

    @abstractmethod
    async def get_analyses(self, conversation_id: int) -> List[Analysis]:
        """Analyses of a conversation, newest first; raises ConversationNotFound."""
        pass
