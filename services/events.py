"""
Event Capacity Coordinator.

Volunteer signups are either confirmed or waitlisted. Event.confirmed_count
is the serialization point: a signup is confirmed only if a guarded increment
of that counter succeeds, and every status flip is itself conditional on the
status it expects to replace. Waitlist promotion is strictly first come,
first served by Signup.created_at (then id), never by anything else.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from models import Event, EventType, Need, Role, Signup, SignupStatus, utcnow
from schemas import EventCapacity, EventCreate, EventRead, EventUpdate

from .counters import expire_cached, guarded_decrement, guarded_increment
from .errors import AlreadySignedUp, InvalidEvent, NotFound, SlotsBelowConfirmed
from .registry import get_need, require_manager

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (SignupStatus.confirmed, SignupStatus.waitlist)

# attempts before giving up on a signup whose status keeps changing under us
_CANCEL_ATTEMPTS = 3


def get_event(session: Session, event_id: int) -> Event:
    event = session.get(Event, event_id)
    if event is None:
        raise NotFound("Event", event_id)
    return event


def remaining_slots(volunteer_slots: int, confirmed_count: int) -> Optional[int]:
    if volunteer_slots == 0:
        return None
    return max(0, volunteer_slots - confirmed_count)


def _take_slot(session: Session, event_id: int) -> bool:
    return guarded_increment(
        session,
        Event,
        "confirmed_count",
        event_id,
        1,
        limit=Event.volunteer_slots,
        unlimited_when=Event.volunteer_slots == 0,
    )


def _flip_status(
    session: Session, signup_id: int, expected: SignupStatus, new: SignupStatus, **extra
) -> bool:
    """Change a signup's status only if it still has the expected one."""
    result = session.exec(  # type: ignore[call-overload]
        update(Signup)
        .where(Signup.id == signup_id, Signup.status == expected)
        .values(status=new, **extra)
        .execution_options(synchronize_session=False)
    )
    expire_cached(session, Signup, signup_id)
    return result.rowcount == 1


def _active_signup(session: Session, event_id: int, helper_id: int) -> Optional[Signup]:
    return session.exec(
        select(Signup).where(
            Signup.event_id == event_id,
            Signup.helper_id == helper_id,
            col(Signup.status).in_(ACTIVE_STATUSES),
        )
    ).first()


def promote_waitlist(session: Session, event_id: int) -> List[int]:
    """
    Move waitlisted signups to confirmed, oldest first, while there is room.

    Returns the helper ids promoted. Does not commit.
    """
    candidates = session.exec(
        select(Signup.id, Signup.helper_id)
        .where(Signup.event_id == event_id, Signup.status == SignupStatus.waitlist)
        .order_by(col(Signup.created_at), col(Signup.id))
    ).all()

    promoted = []
    for signup_id, helper_id in candidates:
        if not _take_slot(session, event_id):
            break
        if not _flip_status(session, signup_id, SignupStatus.waitlist, SignupStatus.confirmed):
            # Cancelled or promoted by someone else meanwhile; hand the slot back.
            guarded_decrement(session, Event, "confirmed_count", event_id)
            continue
        promoted.append(helper_id)

    if promoted:
        logger.info("waitlist promoted", extra={"event_id": event_id, "helper_ids": promoted})
    return promoted


def signup(session: Session, event_id: int, helper_id: int) -> SignupStatus:
    """
    Sign a helper up for an event.

    Confirmed while there is room (or the event is unlimited), waitlisted
    otherwise; a full event never rejects a signup. A helper who cancelled
    earlier can sign up again and joins the back of the queue.
    """
    get_event(session, event_id)

    existing = session.exec(
        select(Signup).where(Signup.event_id == event_id, Signup.helper_id == helper_id)
    ).first()
    if existing is not None and existing.status != SignupStatus.cancelled:
        raise AlreadySignedUp(event_id, helper_id)

    status = SignupStatus.confirmed if _take_slot(session, event_id) else SignupStatus.waitlist

    try:
        if existing is None:
            session.add(Signup(event_id=event_id, helper_id=helper_id, status=status))
        elif not _flip_status(
            session, existing.id, SignupStatus.cancelled, status, created_at=utcnow()
        ):
            raise AlreadySignedUp(event_id, helper_id)
        session.commit()
    except (IntegrityError, AlreadySignedUp):
        # The slot taken above is released by the rollback.
        session.rollback()
        raise AlreadySignedUp(event_id, helper_id)

    logger.info(
        "event signup",
        extra={"event_id": event_id, "helper_id": helper_id, "status": status.value},
    )
    return status


def cancel(session: Session, event_id: int, helper_id: int) -> SignupStatus:
    """
    Cancel a helper's active signup. Freeing a confirmed slot on a limited
    event promotes the oldest waitlisted signup.
    """
    event = get_event(session, event_id)
    slots = event.volunteer_slots

    for _ in range(_CANCEL_ATTEMPTS):
        current = _active_signup(session, event_id, helper_id)
        if current is None:
            raise NotFound("Signup", f"event {event_id} / user {helper_id}")

        previous = SignupStatus(current.status)
        if _flip_status(session, current.id, previous, SignupStatus.cancelled):
            break
        # Promoted between our read and our write; look again.
        session.rollback()
    else:
        raise NotFound("Signup", f"event {event_id} / user {helper_id}")

    promoted: List[int] = []
    if previous == SignupStatus.confirmed:
        guarded_decrement(session, Event, "confirmed_count", event_id)
        if slots > 0:
            promoted = promote_waitlist(session, event_id)

    session.commit()
    logger.info(
        "event signup cancelled",
        extra={
            "event_id": event_id,
            "helper_id": helper_id,
            "previous_status": previous.value,
            "promoted": promoted,
        },
    )
    return SignupStatus.cancelled


def _status_counts(session: Session, event_ids: Iterable[int]) -> Dict[int, Dict[SignupStatus, int]]:
    ids = list(event_ids)
    counts: Dict[int, Dict[SignupStatus, int]] = {event_id: {} for event_id in ids}
    if not ids:
        return counts
    rows = session.exec(
        select(Signup.event_id, Signup.status, func.count())
        .where(col(Signup.event_id).in_(ids))
        .group_by(Signup.event_id, Signup.status)
    ).all()
    for event_id, status, count in rows:
        counts[event_id][SignupStatus(status)] = count
    return counts


def list_for_event(session: Session, event_id: int) -> EventCapacity:
    event = get_event(session, event_id)
    counts = _status_counts(session, [event_id])[event_id]
    confirmed = counts.get(SignupStatus.confirmed, 0)
    return EventCapacity(
        confirmed_count=confirmed,
        waitlist_count=counts.get(SignupStatus.waitlist, 0),
        remaining_slots=remaining_slots(event.volunteer_slots, confirmed),
    )


def _user_statuses(session: Session, event_ids: List[int], user_id: Optional[int]) -> Dict[int, SignupStatus]:
    if user_id is None or not event_ids:
        return {}
    rows = session.exec(
        select(Signup.event_id, Signup.status).where(
            col(Signup.event_id).in_(event_ids), Signup.helper_id == user_id
        )
    ).all()
    return {event_id: SignupStatus(status) for event_id, status in rows}


def to_read(
    session: Session, rows: List[Tuple[Event, Optional[str]]], user_id: Optional[int] = None
) -> List[EventRead]:
    """Attach counts, remaining slots and the caller's own status to events."""
    ids = [event.id for event, _ in rows]
    counts = _status_counts(session, ids)
    mine = _user_statuses(session, ids, user_id)

    result = []
    for event, need_title in rows:
        confirmed = counts[event.id].get(SignupStatus.confirmed, 0)
        result.append(
            EventRead(
                id=event.id,
                need_id=event.need_id,
                need_title=need_title,
                event_type=event.event_type,
                event_start=event.event_start,
                event_end=event.event_end,
                location=event.location,
                volunteer_slots=event.volunteer_slots,
                notes=event.notes,
                confirmed_count=confirmed,
                waitlist_count=counts[event.id].get(SignupStatus.waitlist, 0),
                remaining_slots=remaining_slots(event.volunteer_slots, confirmed),
                user_status=mine.get(event.id),
            )
        )
    return result


def read_event(session: Session, event_id: int, user_id: Optional[int] = None) -> EventRead:
    event = get_event(session, event_id)
    need = session.get(Need, event.need_id)
    return to_read(session, [(event, need.title if need else None)], user_id)[0]


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _check_window(start: datetime, end: Optional[datetime]) -> None:
    if end is not None and end < start:
        raise InvalidEvent("event_end cannot be earlier than event_start")


def _check_slots(slots: int) -> None:
    if slots < 0:
        raise InvalidEvent("volunteer_slots must be 0 or greater")


def create_event(session: Session, acting_role: Role, event_in: EventCreate) -> Event:
    require_manager(acting_role, "create events")
    get_need(session, event_in.need_id)
    start = _naive_utc(event_in.event_start)
    end = _naive_utc(event_in.event_end)
    _check_window(start, end)
    _check_slots(event_in.volunteer_slots)

    event = Event(
        need_id=event_in.need_id,
        event_type=event_in.event_type,
        event_start=start,
        event_end=end,
        location=event_in.location or None,
        volunteer_slots=event_in.volunteer_slots,
        notes=event_in.notes or None,
    )
    session.add(event)
    session.commit()
    session.refresh(event)
    logger.info("event created", extra={"event_id": event.id, "need_id": event.need_id})
    return event


def update_event(session: Session, acting_role: Role, event_id: int, event_in: EventUpdate) -> Event:
    """
    Partial update. Changing volunteer_slots goes through a conditional write
    so it can never drop below the confirmed count; any new room is filled
    from the waitlist.
    """
    require_manager(acting_role, "update events")
    event = get_event(session, event_id)

    changes = event_in.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidEvent("No fields provided to update")

    for required in ("need_id", "event_type", "event_start", "volunteer_slots"):
        if required in changes and changes[required] is None:
            raise InvalidEvent(f"{required} cannot be empty")
    if "need_id" in changes:
        get_need(session, changes["need_id"])
    for field in ("event_start", "event_end"):
        if field in changes:
            changes[field] = _naive_utc(changes[field])

    start = changes.get("event_start") or event.event_start
    end = changes["event_end"] if "event_end" in changes else event.event_end
    _check_window(start, end)

    new_slots = changes.pop("volunteer_slots", None)
    old_slots = event.volunteer_slots
    if new_slots is not None:
        _check_slots(new_slots)
        stmt = update(Event).where(Event.id == event_id)
        if new_slots > 0:
            stmt = stmt.where(col(Event.confirmed_count) <= new_slots)
        result = session.exec(  # type: ignore[call-overload]
            stmt.values(volunteer_slots=new_slots)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            raise SlotsBelowConfirmed(event_id, new_slots, get_event(session, event_id).confirmed_count)
        session.expire(event, ["volunteer_slots"])

    for field, value in changes.items():
        if field in ("location", "notes"):
            value = value or None
        setattr(event, field, value)
    session.add(event)

    if new_slots is not None and (new_slots == 0 or new_slots > old_slots):
        promote_waitlist(session, event_id)

    session.commit()
    session.refresh(event)
    return event


def delete_event(session: Session, acting_role: Role, event_id: int) -> None:
    require_manager(acting_role, "delete events")
    event = get_event(session, event_id)
    session.exec(delete(Signup).where(Signup.event_id == event_id))  # type: ignore[call-overload]
    session.delete(event)
    session.commit()
    logger.info("event deleted", extra={"event_id": event_id})


def list_upcoming_events(
    session: Session,
    now: Optional[datetime] = None,
    event_type: Optional[EventType] = None,
    bundle: Optional[str] = None,
    include_past: bool = False,
    manager_id: Optional[int] = None,
    user_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[EventRead]:
    now = now or utcnow()
    query = select(Event, Need.title).join(Need, Need.id == Event.need_id)

    if not include_past:
        query = query.where(col(Event.event_start) >= now)
    if event_type is not None:
        query = query.where(Event.event_type == event_type)
    if bundle:
        query = query.where(Need.bundle_tag == bundle)
    if manager_id is not None:
        query = query.where(Need.manager_id == manager_id)

    query = query.order_by(col(Event.event_start), col(Event.id))
    if limit is not None and limit > 0:
        query = query.limit(limit)

    return to_read(session, list(session.exec(query).all()), user_id)


def list_events_for_need(session: Session, need_id: int, user_id: Optional[int] = None) -> List[EventRead]:
    need = get_need(session, need_id)
    events = session.exec(
        select(Event).where(Event.need_id == need_id).order_by(col(Event.event_start), col(Event.id))
    ).all()
    return to_read(session, [(event, need.title) for event in events], user_id)
