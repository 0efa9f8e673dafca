"""Request bodies accepted by the HTTP API."""

from typing import Annotated

from pydantic import Field, StringConstraints

from ..domain.models import DomainModel, Role

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class RegisterRequest(DomainModel):
    email: Annotated[
        str,
        StringConstraints(strip_whitespace=True, to_lower=True, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
    ]
    password: str = Field(min_length=8)
    first_name: NonBlank
    last_name: NonBlank


class LoginRequest(DomainModel):
    email: NonBlank
    password: str = Field(min_length=1)


class ConversationCreate(DomainModel):
    title: NonBlank


class TitleUpdate(DomainModel):
    title: NonBlank


class MessageCreate(DomainModel):
    """A message posted to a conversation; defaults to the user's turn."""

    role: Role = Role.USER
    content: NonBlank
