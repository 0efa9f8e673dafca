"""Domain errors raised by the store and the analysis engine."""


class ConversationNotFound(ValueError):
    """The conversation does not exist (or is not visible to the caller)."""

    def __init__(self, conversation_id: int) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class InvalidAnalysisTarget(ValueError):
    """An analysis must explain an assistant message of the same conversation."""


class EmailAlreadyRegistered(ValueError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email {email} is already registered")
        self.email = email


class AnalysisProviderError(Exception):
    """The language-model provider could not be reached or refused the call."""
