from typing import List, Optional

from fastapi import APIRouter, Response

from db import SessionDep
from models import BundleTag, EventType, SignupStatus
from schemas import EventCapacity, EventCreate, EventRead, EventUpdate, SignupResult
from services import events

from .auth import CurrentUserRoleDep, OptionalUserRoleDep

router = APIRouter(tags=["events"])

SIGNUP_MESSAGES = {
    SignupStatus.confirmed: "Volunteer spot confirmed",
    SignupStatus.waitlist: "Event is at capacity. You have been added to the waitlist.",
    SignupStatus.cancelled: "Signup cancelled",
}


def _caller_id(current: Optional[dict]) -> Optional[int]:
    return current["user"].id if current else None


@router.post("/", response_model=EventRead, status_code=201)
def create_event(event_in: EventCreate, session: SessionDep, current: CurrentUserRoleDep):
    event = events.create_event(session, current["role"], event_in)
    return events.read_event(session, event.id)


@router.get("/upcoming", response_model=List[EventRead])
def upcoming_events(
    session: SessionDep,
    current: OptionalUserRoleDep,
    eventType: Optional[EventType] = None,
    bundle: Optional[BundleTag] = None,
    includePast: bool = False,
    managerId: Optional[int] = None,
    limit: Optional[int] = None,
):
    """
    Upcoming events, soonest first, with the caller's own signup status
    when logged in.
    """
    return events.list_upcoming_events(
        session,
        event_type=eventType,
        bundle=bundle,
        include_past=includePast,
        manager_id=managerId,
        user_id=_caller_id(current),
        limit=limit,
    )


@router.get("/need/{need_id}", response_model=List[EventRead])
def events_for_need(need_id: int, session: SessionDep, current: OptionalUserRoleDep):
    return events.list_events_for_need(session, need_id, _caller_id(current))


@router.get("/{event_id}", response_model=EventRead)
def get_event(event_id: int, session: SessionDep, current: OptionalUserRoleDep):
    return events.read_event(session, event_id, _caller_id(current))


@router.get("/{event_id}/capacity", response_model=EventCapacity)
def event_capacity(event_id: int, session: SessionDep):
    return events.list_for_event(session, event_id)


@router.put("/{event_id}", response_model=EventRead)
def update_event(event_id: int, event_in: EventUpdate, session: SessionDep, current: CurrentUserRoleDep):
    events.update_event(session, current["role"], event_id, event_in)
    return events.read_event(session, event_id)


@router.delete("/{event_id}", status_code=204)
def delete_event(event_id: int, session: SessionDep, current: CurrentUserRoleDep):
    events.delete_event(session, current["role"], event_id)
    return Response(status_code=204)


@router.post("/{event_id}/signup", response_model=SignupResult)
def signup(event_id: int, session: SessionDep, current: CurrentUserRoleDep):
    """
    Sign up for an event. A full event puts the caller on the waitlist
    rather than refusing them; the returned status says which.
    """
    status = events.signup(session, event_id, current["user"].id)
    return SignupResult(event_id=event_id, status=status, message=SIGNUP_MESSAGES[status])


@router.post("/{event_id}/cancel", response_model=SignupResult)
def cancel_signup(event_id: int, session: SessionDep, current: CurrentUserRoleDep):
    status = events.cancel(session, event_id, current["user"].id)
    return SignupResult(event_id=event_id, status=status, message=SIGNUP_MESSAGES[status])
