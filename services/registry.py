"""
Need Registry: the authoritative record of each need's target and fulfilled
quantities.

increment_fulfilled is the single writer of Need.quantity_fulfilled. Metadata
CRUD lives here too because delete has to cascade through every table that
references a need.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, or_, update
from sqlmodel import Session, col, select

from models import (
    BasketLine,
    Event,
    FundingRecord,
    Need,
    Priority,
    Role,
    Signup,
    utcnow,
)
from schemas import NeedCreate, NeedUpdate

from .counters import expire_cached, guarded_increment
from .errors import Forbidden, InvalidNeed, InvalidQuantity, NotFound
from .ranking import rank_key, score

logger = logging.getLogger(__name__)


def validate_quantity(quantity) -> int:
    """Accept only real positive integers (bool is not a quantity)."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return quantity


def require_manager(acting_role: Role, action: str) -> None:
    # The role is trusted as passed in; identity is not re-derived here.
    if acting_role != Role.manager:
        raise Forbidden(f"Only managers can {action}")


def get_need(session: Session, need_id: int) -> Need:
    need = session.get(Need, need_id)
    if need is None:
        raise NotFound("Need", need_id)
    return need


def get_remaining_capacity(session: Session, need_id: int) -> int:
    """Read quantity - quantity_fulfilled straight from the store, never from cache."""
    row = session.exec(
        select(Need.quantity, Need.quantity_fulfilled).where(Need.id == need_id)
    ).first()
    if row is None:
        raise NotFound("Need", need_id)
    quantity, fulfilled = row
    return max(0, quantity - fulfilled)


def increment_fulfilled(session: Session, need_id: int, delta: int) -> bool:
    """
    Advance quantity_fulfilled by delta, all or nothing.

    Returns False, writing nothing, when delta would push the need past its
    quantity. The caller owns the transaction.
    """
    validate_quantity(delta)
    applied = guarded_increment(
        session,
        Need,
        "quantity_fulfilled",
        need_id,
        delta,
        limit=Need.quantity,
    )
    if not applied and session.get(Need, need_id) is None:
        raise NotFound("Need", need_id)
    return applied


def create_need(session: Session, acting_role: Role, manager_id: int, need_in: NeedCreate) -> Need:
    require_manager(acting_role, "create needs")

    need = Need(
        manager_id=manager_id,
        title=need_in.title.strip(),
        description=need_in.description,
        category=need_in.category,
        cost=need_in.cost,
        quantity=need_in.quantity,
        priority=need_in.priority,
        needed_by=need_in.needed_by,
        is_perishable=need_in.is_perishable,
        request_count=need_in.request_count,
        bundle_tag=need_in.bundle_tag,
        service_required=need_in.service_required,
    )
    session.add(need)
    session.commit()
    session.refresh(need)
    logger.info("need created", extra={"need_id": need.id, "manager_id": manager_id})
    return need


def update_need(session: Session, acting_role: Role, need_id: int, need_in: NeedUpdate) -> Need:
    """
    Partial update. A new quantity is written with a conditional UPDATE so it
    can never drop below what checkouts have already funded.
    """
    require_manager(acting_role, "update needs")
    need = get_need(session, need_id)

    changes = need_in.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidNeed("No fields provided to update")

    if "title" in changes and changes["title"] is not None:
        changes["title"] = changes["title"].strip()

    new_quantity = changes.pop("quantity", None)
    if new_quantity is not None:
        result = session.exec(  # type: ignore[call-overload]
            update(Need)
            .where(Need.id == need_id, col(Need.quantity_fulfilled) <= new_quantity)
            .values(quantity=new_quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            funded = session.exec(select(Need.quantity_fulfilled).where(Need.id == need_id)).one()
            raise InvalidNeed(f"Quantity cannot be lower than the {funded} units already funded")
        expire_cached(session, Need, need_id, "quantity", "quantity_fulfilled")

    for field, value in changes.items():
        setattr(need, field, value)

    session.add(need)
    session.commit()
    session.refresh(need)
    return need


def delete_need(session: Session, acting_role: Role, need_id: int) -> None:
    """Administrative delete; takes every basket line, funding record and event with it."""
    require_manager(acting_role, "delete needs")
    need = get_need(session, need_id)

    event_ids = list(session.exec(select(Event.id).where(Event.need_id == need_id)).all())
    for stmt in (
        delete(Signup).where(col(Signup.event_id).in_(event_ids)),
        delete(Event).where(Event.need_id == need_id),
        delete(BasketLine).where(BasketLine.need_id == need_id),
        delete(FundingRecord).where(FundingRecord.need_id == need_id),
    ):
        session.exec(stmt.execution_options(synchronize_session=False))  # type: ignore[call-overload]
    session.delete(need)
    session.commit()
    logger.info("need deleted", extra={"need_id": need_id})


def list_needs(
    session: Session,
    now: Optional[datetime] = None,
    priority: Optional[Priority] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    bundle: Optional[str] = None,
    perishable: Optional[bool] = None,
    service: Optional[bool] = None,
    due_within: Optional[int] = None,
    manager_id: Optional[int] = None,
    sort: str = "urgency",
    limit: Optional[int] = None,
) -> List[Tuple[Need, float]]:
    """
    List needs, optionally filtered, ordered by urgency unless asked otherwise.
    Returns (need, urgency score) pairs.
    """
    now = now or utcnow()
    query = select(Need)

    if priority is not None:
        query = query.where(Need.priority == priority)

    if category:
        query = query.where(col(Need.category).contains(category))

    if search:
        query = query.where(
            or_(col(Need.title).contains(search), col(Need.description).contains(search))
        )

    if bundle:
        query = query.where(Need.bundle_tag == bundle)

    if perishable is not None:
        query = query.where(Need.is_perishable == perishable)

    if service is not None:
        query = query.where(Need.service_required == service)

    if due_within is not None:
        horizon: date = now.date() + timedelta(days=due_within)
        query = query.where(col(Need.needed_by).is_not(None), col(Need.needed_by) <= horizon)

    if manager_id is not None:
        query = query.where(Need.manager_id == manager_id)

    needs = session.exec(query).all()

    if sort == "newest":
        ordered = sorted(needs, key=lambda n: (-n.created_at.timestamp(), n.id))
    elif sort == "deadline":
        ordered = sorted(
            needs,
            key=lambda n: (n.needed_by is None, n.needed_by or date.max, rank_key(n, now)),
        )
    else:
        ordered = sorted(needs, key=lambda n: rank_key(n, now))

    if limit is not None and limit > 0:
        ordered = ordered[:limit]

    return [(need, score(need, now)) for need in ordered]
