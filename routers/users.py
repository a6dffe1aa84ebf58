from typing import List, Optional

from fastapi import APIRouter
from sqlmodel import col, select

from db import SessionDep
from models import Role, Signup, SignupStatus, User
from schemas import UserActivity, UserRead
from services import checkout as engine
from services.errors import NotFound

router = APIRouter(tags=["users"])


def _get_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


@router.get("/", response_model=List[UserRead])
def list_users(session: SessionDep, role: Optional[Role] = None):
    query = select(User)
    if role is not None:
        query = query.where(User.role == role)
    return session.exec(query.order_by(col(User.id))).all()


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep):
    return _get_user(session, user_id)


@router.get("/{user_id}/activity", response_model=UserActivity)
def user_activity(user_id: int, session: SessionDep):
    """
    What a helper has given: funded units and amount, and events they are
    confirmed or waitlisted for.
    """
    user = _get_user(session, user_id)
    funding = engine.list_funding_for_helper(session, user_id)
    statuses = session.exec(
        select(Signup.status).where(
            Signup.helper_id == user_id,
            col(Signup.status).in_([SignupStatus.confirmed, SignupStatus.waitlist]),
        )
    ).all()
    return UserActivity(
        user=UserRead.model_validate(user),
        funded_quantity=funding.total_quantity,
        funded_amount=funding.total_amount,
        confirmed_events=sum(1 for s in statuses if s == SignupStatus.confirmed),
        waitlisted_events=sum(1 for s in statuses if s == SignupStatus.waitlist),
    )
