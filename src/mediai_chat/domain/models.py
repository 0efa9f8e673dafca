"""Domain models for the symptom-assessment service."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class UrgencyLevel(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class Likelihood(str, Enum):
    HIGH = "High"
    MODERATE = "Moderate"
    LOW = "Low"


class UserPublic(DomainModel):
    id: int
    email: str
    first_name: str
    last_name: str
    created_at: datetime = Field(default_factory=utcnow)


class User(UserPublic):
    """Registered account. The password hash never leaves the server."""

    password_hash: str = Field(exclude=True, repr=False)


class HealthProfile(DomainModel):
    """Stored health attributes used to personalize analyses."""

    user_id: int
    age: Optional[int] = None
    gender: Optional[str] = None
    height: Optional[float] = None  # meters
    weight: Optional[float] = None  # kg
    blood_type: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    chronic_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    family_history: List[str] = Field(default_factory=list)
    activity_level: Optional[str] = None
    diet_type: Optional[str] = None
    hours_of_sleep: Optional[float] = None
    stress_level: Optional[int] = None
    blood_pressure: Optional[str] = None
    heart_rate: Optional[int] = None
    bmi: Optional[float] = None
    last_updated: datetime = Field(default_factory=utcnow)


class Conversation(DomainModel):
    """Symptom-assessment session owned by one user."""

    id: int
    user_id: int
    title: str
    created_at: datetime = Field(default_factory=utcnow)


class Message(DomainModel):
    """One turn of a conversation."""

    id: int
    conversation_id: int
    role: Role
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class Condition(DomainModel):
    name: str = Field(min_length=1)
    likelihood: Likelihood
    explanation: Optional[str] = None


class Suggestion(DomainModel):
    text: str = Field(min_length=1)
    is_warning: bool
    reasoning: Optional[str] = None


class AnalysisResult(DomainModel):
    """Structured assessment expected back from the language model."""

    urgency: UrgencyLevel
    conditions: List[Condition]
    suggestions: List[Suggestion]
    message: str = Field(min_length=1)
    follow_up_question: str = Field(min_length=1)
    specialty: Optional[str] = None


class Analysis(DomainModel):
    """Persisted assessment explaining one assistant message."""

    id: int
    conversation_id: int
    message_id: int
    urgency_level: UrgencyLevel
    conditions: List[Condition]
    suggestions: List[Suggestion]
    specialty: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AnalysisSummary(DomainModel):
    """Analysis fields returned alongside a fresh assistant message."""

    urgency_level: UrgencyLevel
    conditions: List[Condition]
    suggestions: List[Suggestion]
    follow_up_question: str
    specialty: Optional[str] = None

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "AnalysisSummary":
        return cls(
            urgency_level=result.urgency,
            conditions=result.conditions,
            suggestions=result.suggestions,
            follow_up_question=result.follow_up_question,
            specialty=result.specialty,
        )


class PostMessageResult(DomainModel):
    """Outcome of submitting a message to a conversation."""

    message: Message
    analysis: Optional[AnalysisSummary] = None
    error: Optional[str] = None
