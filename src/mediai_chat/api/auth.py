"""Local email/password authentication on a signed session cookie."""

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request
from structlog import get_logger

from ..domain.errors import EmailAlreadyRegistered
from ..domain.models import User, UserPublic
from ..repositories.base import Repository
from .dependencies import get_current_user, get_repository
from .schemas import LoginRequest, RegisterRequest

logger = get_logger()

router = APIRouter(prefix="/api", tags=["auth"])


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


@router.post("/register", response_model=UserPublic, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    repository: Repository = Depends(get_repository),
) -> User:
    """Creates an account and signs it in"""
    try:
        user = await repository.create_user(
            email=body.email,
            password_hash=hash_password(body.password),
            first_name=body.first_name,
            last_name=body.last_name,
        )
    except EmailAlreadyRegistered:
        logger.info("registration_rejected", reason="duplicate_email")
        raise HTTPException(status_code=409, detail="Email already registered")

    request.session["user_id"] = user.id
    logger.info("user_registered", user_id=user.id)
    return user


@router.post("/login", response_model=UserPublic)
async def login(
    body: LoginRequest,
    request: Request,
    repository: Repository = Depends(get_repository),
) -> User:
    user = await repository.get_user_by_email(body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("login_failed")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    request.session["user_id"] = user.id
    logger.info("user_logged_in", user_id=user.id)
    return user


@router.post("/logout")
async def logout(request: Request) -> dict:
    request.session.pop("user_id", None)
    return {"ok": True}


@router.get("/user", response_model=UserPublic)
async def current_user(user: User = Depends(get_current_user)) -> User:
    return user
