"""
Checkout / Commit Engine.

Turns a helper's basket into FundingRecords. Every basket line commits in its
own transaction (guarded increment + funding record + removal of the line),
so a failure part way through never double counts a line and a retried
checkout simply picks up whatever is still in the basket. Lines that lost
capacity since they were added are clamped or dropped and reported back,
never raised.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from models import BasketLine, FundingRecord, Need, Role
from schemas import CheckoutResult, CommittedLine, DroppedLine, FundingHistory, FundingRecordRead

from .basket import clear
from .counters import expire_cached
from .errors import CapacityExceededAtCommit, EmptyBasket, NotFound
from .registry import get_need, get_remaining_capacity, increment_fulfilled, require_manager

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _claim_line(session: Session, line_id: int) -> bool:
    """
    Delete the basket line inside the line's transaction. Zero rows means
    another checkout already took it.
    """
    result = session.exec(  # type: ignore[call-overload]
        delete(BasketLine)
        .where(BasketLine.id == line_id)
        .execution_options(synchronize_session=False)
    )
    expire_cached(session, BasketLine, line_id)
    return result.rowcount == 1


def _drop(session: Session, need_id: int, requested: int, reason: str) -> DroppedLine:
    # Only the claimed line's delete is pending here.
    session.commit()
    logger.warning(
        "checkout line dropped",
        extra={"need_id": need_id, "requested": requested, "reason": reason},
    )
    return DroppedLine(need_id=need_id, requested=requested, committed=0, reason=reason)


def _commit_line(
    session: Session, helper_id: int, line_id: int, need_id: int, requested: int
) -> Tuple[Optional[CommittedLine], Optional[DroppedLine]]:
    if not _claim_line(session, line_id):
        session.rollback()
        logger.info(
            "checkout line already taken",
            extra={"helper_id": helper_id, "line_id": line_id, "need_id": need_id},
        )
        return None, None

    need = session.get(Need, need_id)
    if need is None:
        return None, _drop(session, need_id, requested, "need_removed")

    try:
        quantity = min(requested, get_remaining_capacity(session, need_id))
        if quantity <= 0:
            return None, _drop(session, need_id, requested, "fully_funded")
        applied = increment_fulfilled(session, need_id, quantity)
    except NotFound:
        return None, _drop(session, need_id, requested, "need_removed")
    if not applied:
        # Another checkout got there between our read and our write.
        return None, _drop(session, need_id, requested, "lost_race")

    amount = (Decimal(need.cost) * quantity).quantize(CENTS)
    record = FundingRecord(need_id=need_id, helper_id=helper_id, quantity=quantity, amount=amount)
    session.add(record)
    session.commit()
    session.refresh(record)

    committed = CommittedLine(
        need_id=need_id,
        funding_record_id=record.id,
        requested=requested,
        committed=quantity,
        amount=amount,
    )
    logger.info(
        "checkout line committed",
        extra={
            "helper_id": helper_id,
            "need_id": need_id,
            "quantity": quantity,
            "amount": str(amount),
            "funding_record_id": record.id,
        },
    )

    if quantity < requested:
        conflict = CapacityExceededAtCommit(need_id, requested, quantity)
        logger.warning("checkout line reduced: %s", conflict.message)
        return committed, DroppedLine(
            need_id=need_id, requested=requested, committed=quantity, reason="reduced"
        )
    return committed, None


def checkout(session: Session, helper_id: int) -> CheckoutResult:
    """
    Commit the helper's basket.

    Raises EmptyBasket when there is nothing to commit. Storage errors roll
    back the line in flight and propagate; lines committed before it stay
    committed and are already gone from the basket.
    """
    lines = session.exec(
        select(BasketLine)
        .where(BasketLine.helper_id == helper_id)
        .order_by(col(BasketLine.added_at), col(BasketLine.id))
    ).all()
    if not lines:
        raise EmptyBasket()

    # Plain values: the ORM objects expire at every per-line commit.
    pending = [(line.id, line.need_id, line.quantity) for line in lines]

    committed: List[CommittedLine] = []
    dropped: List[DroppedLine] = []
    for line_id, need_id, requested in pending:
        try:
            done, lost = _commit_line(session, helper_id, line_id, need_id, requested)
        except SQLAlchemyError:
            session.rollback()
            logger.exception(
                "checkout aborted by storage error",
                extra={"helper_id": helper_id, "need_id": need_id},
            )
            raise
        if done is not None:
            committed.append(done)
        if lost is not None:
            dropped.append(lost)

    # Whatever is left (nothing, unless lines were added mid-checkout) goes too.
    clear(session, helper_id)

    total = sum((line.amount for line in committed), Decimal("0.00"))
    logger.info(
        "checkout finished",
        extra={
            "helper_id": helper_id,
            "committed_lines": len(committed),
            "dropped_lines": len(dropped),
            "total_amount": str(total),
        },
    )
    return CheckoutResult(committed=committed, dropped=dropped, total_amount=total)


def _history(records: List[FundingRecord]) -> FundingHistory:
    return FundingHistory(
        count=len(records),
        records=[FundingRecordRead.model_validate(r) for r in records],
        total_amount=sum((Decimal(r.amount) for r in records), Decimal("0.00")),
        total_quantity=sum(r.quantity for r in records),
    )


def list_funding_for_helper(session: Session, helper_id: int) -> FundingHistory:
    records = session.exec(
        select(FundingRecord)
        .where(FundingRecord.helper_id == helper_id)
        .order_by(col(FundingRecord.created_at).desc(), col(FundingRecord.id).desc())
    ).all()
    return _history(list(records))


def list_funding_for_need(session: Session, need_id: int) -> FundingHistory:
    get_need(session, need_id)
    records = session.exec(
        select(FundingRecord)
        .where(FundingRecord.need_id == need_id)
        .order_by(col(FundingRecord.created_at).desc(), col(FundingRecord.id).desc())
    ).all()
    return _history(list(records))


def list_all_funding(session: Session, acting_role: Role) -> FundingHistory:
    require_manager(acting_role, "view all funding")
    records = session.exec(
        select(FundingRecord).order_by(
            col(FundingRecord.created_at).desc(), col(FundingRecord.id).desc()
        )
    ).all()
    return _history(list(records))
