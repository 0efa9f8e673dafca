"""Relational repository backed by the SQLAlchemy async ORM."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from ..domain.errors import ConversationNotFound, EmailAlreadyRegistered, InvalidAnalysisTarget
from ..domain.models import (
    Analysis,
    AnalysisResult,
    Condition,
    Conversation,
    HealthProfile,
    Message,
    Role,
    Suggestion,
    User,
    utcnow,
)
from .base import Repository

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(128))
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class HealthProfileRow(Base):
    __tablename__ = "health_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True)
    # Attribute payload mirrors HealthProfile; queried only as a whole.
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ConversationRow(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class MessageRow(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id"), index=True)
    # user | assistant
    role: Mapped[str] = mapped_column(String(20))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AnalysisRow(Base):
    __tablename__ = "analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversations.id"), index=True)
    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id"), unique=True)
    # mild | moderate | severe
    urgency_level: Mapped[str] = mapped_column(String(20))
    conditions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON)
    suggestions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON)
    specialty: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def _aware(value: datetime) -> datetime:
    # SQLite drops the offset; stored values are always UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=_aware(row.created_at),
    )


def _to_conversation(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id, user_id=row.user_id, title=row.title, created_at=_aware(row.created_at)
    )


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        role=Role(row.role),
        content=row.content,
        created_at=_aware(row.created_at),
    )


def _to_analysis(row: AnalysisRow) -> Analysis:
    return Analysis(
        id=row.id,
        conversation_id=row.conversation_id,
        message_id=row.message_id,
        urgency_level=row.urgency_level,
        conditions=[Condition.model_validate(c) for c in row.conditions],
        suggestions=[Suggestion.model_validate(s) for s in row.suggestions],
        specialty=row.specialty,
        created_at=_aware(row.created_at),
    )


class SqlRepository(Repository):
    """Repository persisting to any SQLAlchemy async database URL."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
            # A single shared connection keeps an in-memory database alive.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)
        logger.info("repository_initialized", backend="sql", dialect=self.engine.dialect.name)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def create_user(
        self, email: str, password_hash: str, first_name: str, last_name: str
    ) -> User:
        email = email.strip().lower()
        row = UserRow(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
        )
        try:
            async with self._sessions() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise EmailAlreadyRegistered(email) from e
        logger.info("user_created", user_id=row.id)
        return _to_user(row)

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._sessions() as session:
            row = await session.get(UserRow, user_id)
            return _to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._sessions() as session:
            row = await session.scalar(
                select(UserRow).where(UserRow.email == email.strip().lower())
            )
            return _to_user(row) if row else None

    async def get_health_profile(self, user_id: int) -> Optional[HealthProfile]:
        async with self._sessions() as session:
            row = await session.scalar(
                select(HealthProfileRow).where(HealthProfileRow.user_id == user_id)
            )
            if row is None:
                return None
            return HealthProfile(user_id=user_id, last_updated=_aware(row.last_updated), **row.data)

    async def save_health_profile(self, profile: HealthProfile) -> HealthProfile:
        data = profile.model_dump(mode="json", exclude={"user_id", "last_updated"})
        async with self._sessions() as session, session.begin():
            row = await session.scalar(
                select(HealthProfileRow).where(HealthProfileRow.user_id == profile.user_id)
            )
            if row is None:
                row = HealthProfileRow(user_id=profile.user_id)
                session.add(row)
            row.data = data
            row.last_updated = profile.last_updated
        return profile

    async def create_conversation(self, user_id: int, title: str) -> Conversation:
        row = ConversationRow(user_id=user_id, title=title)
        async with self._sessions() as session, session.begin():
            session.add(row)
        logger.info("conversation_created", conversation_id=row.id)
        return _to_conversation(row)

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        async with self._sessions() as session:
            row = await session.get(ConversationRow, conversation_id)
            if row is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id)
                return None
            return _to_conversation(row)

    async def list_conversations(
        self, user_id: int, limit: int = 100, offset: int = 0
    ) -> List[Conversation]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(ConversationRow)
                .where(ConversationRow.user_id == user_id)
                .order_by(ConversationRow.created_at.desc(), ConversationRow.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [_to_conversation(r) for r in rows]

    async def update_conversation_title(
        self, conversation_id: int, title: str
    ) -> Conversation:
        async with self._sessions() as session, session.begin():
            row = await self._require_conversation(session, conversation_id)
            row.title = title
        return _to_conversation(row)

    async def add_message(self, conversation_id: int, role: Role, content: str) -> Message:
        async with self._sessions() as session, session.begin():
            await self._require_conversation(session, conversation_id)
            row = await self._insert_message(session, conversation_id, role, content)
        return _to_message(row)

    async def get_messages(
        self, conversation_id: int, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        async with self._sessions() as session:
            await self._require_conversation(session, conversation_id)
            query = (
                select(MessageRow)
                .where(MessageRow.conversation_id == conversation_id)
                .order_by(MessageRow.created_at, MessageRow.id)
                .offset(offset)
            )
            if limit is not None:
                query = query.limit(limit)
            rows = await session.scalars(query)
            return [_to_message(r) for r in rows]

    async def add_analysis(
        self, conversation_id: int, message_id: int, result: AnalysisResult
    ) -> Analysis:
        async with self._sessions() as session, session.begin():
            await self._require_conversation(session, conversation_id)
            row = await self._insert_analysis(session, conversation_id, message_id, result)
        return _to_analysis(row)

    async def add_assistant_reply(
        self, conversation_id: int, result: AnalysisResult
    ) -> Tuple[Message, Analysis]:
        async with self._sessions() as session, session.begin():
            await self._require_conversation(session, conversation_id)
            message_row = await self._insert_message(
                session, conversation_id, Role.ASSISTANT, result.message
            )
            analysis_row = await self._insert_analysis(
                session, conversation_id, message_row.id, result
            )
        return _to_message(message_row), _to_analysis(analysis_row)

    async def get_analyses(self, conversation_id: int) -> List[Analysis]:
        async with self._sessions() as session:
            await self._require_conversation(session, conversation_id)
            rows = await session.scalars(
                select(AnalysisRow)
                .where(AnalysisRow.conversation_id == conversation_id)
                .order_by(AnalysisRow.created_at.desc(), AnalysisRow.id.desc())
            )
            return [_to_analysis(r) for r in rows]

    async def _require_conversation(
        self, session: AsyncSession, conversation_id: int
    ) -> ConversationRow:
        row = await session.get(ConversationRow, conversation_id)
        if row is None:
            logger.error("conversation_not_found", conversation_id=conversation_id)
            raise ConversationNotFound(conversation_id)
        return row

    async def _insert_message(
        self, session: AsyncSession, conversation_id: int, role: Role, content: str
    ) -> MessageRow:
        row = MessageRow(conversation_id=conversation_id, role=Role(role).value, content=content)
        session.add(row)
        await session.flush()
        logger.info("message_added", conversation_id=conversation_id, message_role=row.role)
        return row

    async def _insert_analysis(
        self,
        session: AsyncSession,
        conversation_id: int,
        message_id: int,
        result: AnalysisResult,
    ) -> AnalysisRow:
        target = await session.get(MessageRow, message_id)
        if (
            target is None
            or target.conversation_id != conversation_id
            or target.role != Role.ASSISTANT.value
        ):
            raise InvalidAnalysisTarget(
                f"Message {message_id} is not an assistant message of conversation {conversation_id}"
            )
        row = AnalysisRow(
            conversation_id=conversation_id,
            message_id=message_id,
            urgency_level=result.urgency.value,
            conditions=[
                c.model_dump(mode="json", by_alias=True, exclude_none=True)
                for c in result.conditions
            ],
            suggestions=[
                s.model_dump(mode="json", by_alias=True, exclude_none=True)
                for s in result.suggestions
            ],
            specialty=result.specialty,
        )
        session.add(row)
        await session.flush()
        logger.info(
            "analysis_added",
            conversation_id=conversation_id,
            message_id=message_id,
            urgency_level=row.urgency_level,
        )
        return row
