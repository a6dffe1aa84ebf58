from fastapi import APIRouter

from db import SessionDep
from schemas import CheckoutResult, FundingHistory
from services import checkout as engine

from .auth import CurrentUserRoleDep

router = APIRouter(tags=["funding"])


@router.post("/checkout", response_model=CheckoutResult, status_code=201)
def checkout(session: SessionDep, current: CurrentUserRoleDep):
    """
    Commit the caller's basket.

    Lines that lost capacity since they were added come back under "dropped"
    (reduced or skipped) instead of failing the whole checkout.
    """
    return engine.checkout(session, current["user"].id)


@router.get("/me", response_model=FundingHistory)
def my_funding(session: SessionDep, current: CurrentUserRoleDep):
    return engine.list_funding_for_helper(session, current["user"].id)


@router.get("/all", response_model=FundingHistory)
def all_funding(session: SessionDep, current: CurrentUserRoleDep):
    """
    Every funding record. Managers only.
    """
    return engine.list_all_funding(session, current["role"])


@router.get("/need/{need_id}", response_model=FundingHistory)
def need_funding(need_id: int, session: SessionDep):
    return engine.list_funding_for_need(session, need_id)
