"""
Basket Store: each helper's tentative quantity per need.

Capacity checks here are advisory and only give early feedback. No capacity
is held, so checkout re-checks everything against the registry.
"""
import logging
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from models import BasketLine, Need
from schemas import BasketLineRead, BasketRead, NeedSnapshot

from .errors import CapacityExceeded, NotFound
from .registry import get_need, get_remaining_capacity, validate_quantity

logger = logging.getLogger(__name__)


def _find_line(session: Session, helper_id: int, need_id: int):
    return session.exec(
        select(BasketLine).where(
            BasketLine.helper_id == helper_id,
            BasketLine.need_id == need_id,
        )
    ).first()


def _owned_line(session: Session, helper_id: int, line_id: int) -> BasketLine:
    # Someone else's line is reported exactly like a missing one.
    line = session.get(BasketLine, line_id)
    if line is None or line.helper_id != helper_id:
        raise NotFound("Basket line", line_id)
    return line


def add_or_merge(session: Session, helper_id: int, need_id: int, quantity: int) -> BasketLine:
    """
    Put quantity units of a need in the helper's basket, adding to an
    existing line for the same need if there is one.
    """
    validate_quantity(quantity)
    get_need(session, need_id)
    available = get_remaining_capacity(session, need_id)

    line = _find_line(session, helper_id, need_id)
    new_total = quantity + (line.quantity if line else 0)
    if new_total > available:
        raise CapacityExceeded(need_id, new_total, available)

    if line is None:
        line = BasketLine(helper_id=helper_id, need_id=need_id, quantity=quantity)
    else:
        line.quantity = new_total
    session.add(line)

    try:
        session.commit()
    except IntegrityError:
        # A parallel request created the line first; merge into that one.
        session.rollback()
        line = _find_line(session, helper_id, need_id)
        if line is None:
            raise
        new_total = line.quantity + quantity
        if new_total > available:
            raise CapacityExceeded(need_id, new_total, available)
        line.quantity = new_total
        session.add(line)
        session.commit()

    session.refresh(line)
    return line


def update_quantity(session: Session, helper_id: int, line_id: int, quantity: int) -> BasketLine:
    validate_quantity(quantity)
    line = _owned_line(session, helper_id, line_id)

    available = get_remaining_capacity(session, line.need_id)
    if quantity > available:
        raise CapacityExceeded(line.need_id, quantity, available)

    line.quantity = quantity
    session.add(line)
    session.commit()
    session.refresh(line)
    return line


def remove(session: Session, helper_id: int, line_id: int) -> None:
    line = _owned_line(session, helper_id, line_id)
    session.delete(line)
    session.commit()


def clear(session: Session, helper_id: int) -> int:
    """Empty the basket. Safe to repeat; returns how many lines went away."""
    result = session.exec(  # type: ignore[call-overload]
        delete(BasketLine).where(BasketLine.helper_id == helper_id)
    )
    session.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info("basket cleared", extra={"helper_id": helper_id, "lines_removed": removed})
    return removed


def list_with_totals(session: Session, helper_id: int) -> BasketRead:
    """
    The helper's basket joined with current need data.

    Lines pointing at a need that no longer exists are left out.
    """
    rows = session.exec(
        select(BasketLine, Need)
        .join(Need, Need.id == BasketLine.need_id)
        .where(BasketLine.helper_id == helper_id)
        .order_by(BasketLine.added_at.desc(), BasketLine.id.desc())
    ).all()

    lines = []
    grand_total = Decimal("0.00")
    for line, need in rows:
        line_total = (Decimal(need.cost) * line.quantity).quantize(Decimal("0.01"))
        grand_total += line_total
        lines.append(
            BasketLineRead(
                id=line.id,
                need_id=need.id,
                quantity=line.quantity,
                added_at=line.added_at,
                line_total=line_total,
                need=NeedSnapshot.model_validate(need),
            )
        )

    return BasketRead(count=len(lines), lines=lines, grand_total=grand_total)
