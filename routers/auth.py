import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlmodel import select

import config
from db import SessionDep
from models import Role, User
from schemas import LoginData, UserRead

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)

serializer = URLSafeTimedSerializer(config.SECRET_KEY)


def create_session_token(user_id: int, role: str) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "helper"}
    """
    return serializer.dumps({"user_id": user_id, "role": role})


def verify_session_token(token: str, max_age_seconds: int = config.SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def role_for_username(username: str) -> Role:
    # Trust-based: no password, the configured username is the manager.
    if username.lower() == config.MANAGER_USERNAME.lower():
        return Role.manager
    return Role.helper


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE),
) -> dict:
    """
    Reads the 'session' cookie, verifies the token,
    looks up the user, and returns {"user": User, "role": Role}.
    Raises 401 if not logged in / invalid.
    """
    if session_token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(session_token)
    if not data:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise HTTPException(status_code=401, detail="User not found for this session")

    return {"user": user, "role": Role(data["role"])}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def get_optional_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=config.SESSION_COOKIE),
) -> Optional[dict]:
    """
    Like get_current_user_and_role, but returns None instead of raising 401.
    Used by public listings that annotate the caller's own signup status.
    """
    if session_token is None:
        return None

    data = verify_session_token(session_token)
    if not data:
        return None

    user = session.get(User, data["user_id"])
    if user is None:
        return None

    return {"user": user, "role": Role(data["role"])}


OptionalUserRoleDep = Annotated[Optional[dict], Depends(get_optional_user_and_role)]


@router.post("/login", response_model=UserRead)
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in by username alone and set a signed cookie.
    Unknown usernames are registered on the spot.
    """
    username = payload.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Username is required")

    user = session.exec(select(User).where(User.username == username)).first()
    if user is None:
        user = User(username=username, role=role_for_username(username))
        session.add(user)
        session.commit()
        session.refresh(user)
        response.status_code = 201
        logger.info("user registered", extra={"user_id": user.id, "role": Role(user.role).value})

    if user.id is None:
        raise HTTPException(status_code=500, detail="User has no ID in database")

    token = create_session_token(user.id, Role(user.role).value)
    response.set_cookie(
        key=config.SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=config.SESSION_MAX_AGE,
    )
    return user


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie(config.SESSION_COOKIE)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserRead)
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user.
    """
    return current["user"]
