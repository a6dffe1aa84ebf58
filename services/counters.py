"""
Guarded read-modify-write for the two shared counters in the system:
Need.quantity_fulfilled and Event.confirmed_count.

Each call is one conditional UPDATE, so the database linearizes concurrent
writers and a losing writer simply sees zero affected rows. Nothing else in
the codebase may write those columns.
"""
import logging
from typing import Optional, Type

from sqlalchemy import or_, update
from sqlalchemy.orm.util import identity_key
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, SQLModel

logger = logging.getLogger(__name__)


def expire_cached(session: Session, model: Type[SQLModel], row_id: int, *attrs: str) -> None:
    """
    Bulk UPDATEs bypass the identity map; drop stale values if the session
    holds the row. No attrs means the whole instance.
    """
    instance = session.identity_map.get(identity_key(model, row_id))
    if instance is not None:
        session.expire(instance, list(attrs) or None)


def guarded_increment(
    session: Session,
    model: Type[SQLModel],
    counter: str,
    row_id: int,
    delta: int,
    *,
    limit,
    unlimited_when: Optional[ColumnElement] = None,
) -> bool:
    """
    Add delta to model.counter for one row unless that would pass limit.

    limit may be a number or a column of the same row. unlimited_when, if
    given, is a SQL condition under which the limit does not apply.
    Returns True when the row was updated. Does not commit.
    """
    column = getattr(model, counter)
    condition = column + delta <= limit
    if unlimited_when is not None:
        condition = or_(unlimited_when, condition)

    stmt = (
        update(model)
        .where(model.id == row_id, condition)
        .values({counter: column + delta})
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    expire_cached(session, model, row_id, counter)

    if result.rowcount != 1:
        logger.info(
            "guarded increment rejected",
            extra={"model": model.__name__, "counter": counter, "row_id": row_id, "delta": delta},
        )
        return False
    return True


def guarded_decrement(
    session: Session,
    model: Type[SQLModel],
    counter: str,
    row_id: int,
    delta: int = 1,
) -> bool:
    """Subtract delta from model.counter for one row, never going below zero."""
    column = getattr(model, counter)
    stmt = (
        update(model)
        .where(model.id == row_id, column - delta >= 0)
        .values({counter: column - delta})
        .execution_options(synchronize_session=False)
    )
    result = session.exec(stmt)  # type: ignore[call-overload]
    expire_cached(session, model, row_id, counter)

    if result.rowcount != 1:
        logger.warning(
            "guarded decrement rejected",
            extra={"model": model.__name__, "counter": counter, "row_id": row_id, "delta": delta},
        )
        return False
    return True
