from fastapi import APIRouter, Response

from db import SessionDep
from schemas import BasketAdd, BasketQuantityUpdate, BasketRead
from services import basket

from .auth import CurrentUserRoleDep

router = APIRouter(tags=["basket"])


@router.get("/", response_model=BasketRead)
def read_basket(session: SessionDep, current: CurrentUserRoleDep):
    """
    The caller's basket with current need details and totals.
    """
    return basket.list_with_totals(session, current["user"].id)


@router.post("/", response_model=BasketRead)
def add_to_basket(line_in: BasketAdd, session: SessionDep, current: CurrentUserRoleDep):
    """
    Add units of a need, merging with an existing line for the same need.
    Rejected with 409 when more than the remaining quantity is requested.
    """
    user_id = current["user"].id
    basket.add_or_merge(session, user_id, line_in.need_id, line_in.quantity)
    return basket.list_with_totals(session, user_id)


@router.put("/{line_id}", response_model=BasketRead)
def update_basket_line(
    line_id: int,
    update: BasketQuantityUpdate,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    user_id = current["user"].id
    basket.update_quantity(session, user_id, line_id, update.quantity)
    return basket.list_with_totals(session, user_id)


@router.delete("/{line_id}", status_code=204)
def remove_basket_line(line_id: int, session: SessionDep, current: CurrentUserRoleDep):
    basket.remove(session, current["user"].id, line_id)
    return Response(status_code=204)


@router.delete("/")
def clear_basket(session: SessionDep, current: CurrentUserRoleDep):
    """
    Empty the caller's basket. Clearing an empty basket is not an error.
    """
    removed = basket.clear(session, current["user"].id)
    return {"message": "Basket cleared", "itemsRemoved": removed}
