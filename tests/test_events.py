from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from models import Event, EventType, Role, Signup, SignupStatus, utcnow
from schemas import EventCreate, EventUpdate
from services import events
from services.errors import AlreadySignedUp, Forbidden, InvalidEvent, NotFound, SlotsBelowConfirmed


@pytest.fixture
def helpers(make_helper):
    return [make_helper(name) for name in ("ana", "ben", "cai", "dee")]


def statuses(session, event_id):
    session.expire_all()
    rows = session.exec(select(Signup).where(Signup.event_id == event_id)).all()
    return {row.helper_id: SignupStatus(row.status) for row in rows}


class TestSignup:
    def test_unlimited_event_confirms_everyone(self, session, make_event, helpers, reload):
        event = make_event(volunteer_slots=0)
        for helper in helpers:
            assert events.signup(session, event.id, helper.id) == SignupStatus.confirmed

        capacity = events.list_for_event(session, event.id)
        assert capacity.confirmed_count == len(helpers)
        assert capacity.waitlist_count == 0
        assert capacity.remaining_slots is None
        assert reload(Event, event.id).confirmed_count == len(helpers)

    def test_full_event_waitlists_instead_of_rejecting(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        a, b, c = helpers[:3]
        assert events.signup(session, event.id, a.id) == SignupStatus.confirmed
        assert events.signup(session, event.id, b.id) == SignupStatus.waitlist
        assert events.signup(session, event.id, c.id) == SignupStatus.waitlist

        capacity = events.list_for_event(session, event.id)
        assert (capacity.confirmed_count, capacity.waitlist_count, capacity.remaining_slots) == (1, 2, 0)

    def test_duplicate_signup(self, session, make_event, helpers):
        event = make_event(volunteer_slots=2)
        events.signup(session, event.id, helpers[0].id)
        with pytest.raises(AlreadySignedUp):
            events.signup(session, event.id, helpers[0].id)
        assert events.list_for_event(session, event.id).confirmed_count == 1

    def test_waitlisted_duplicate_is_also_rejected(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        events.signup(session, event.id, helpers[0].id)
        events.signup(session, event.id, helpers[1].id)
        with pytest.raises(AlreadySignedUp):
            events.signup(session, event.id, helpers[1].id)

    def test_unknown_event(self, session, helpers):
        with pytest.raises(NotFound):
            events.signup(session, 4040, helpers[0].id)


class TestCancel:
    def test_cancel_promotes_oldest_waitlisted(self, session, make_event, helpers, reload):
        event = make_event(volunteer_slots=1)
        a, b, c = helpers[:3]
        for helper in (a, b, c):
            events.signup(session, event.id, helper.id)

        assert events.cancel(session, event.id, a.id) == SignupStatus.cancelled
        assert statuses(session, event.id) == {
            a.id: SignupStatus.cancelled,
            b.id: SignupStatus.confirmed,
            c.id: SignupStatus.waitlist,
        }
        assert reload(Event, event.id).confirmed_count == 1

        events.cancel(session, event.id, b.id)
        assert statuses(session, event.id)[c.id] == SignupStatus.confirmed

    def test_cancelling_waitlisted_promotes_nobody(self, session, make_event, helpers, reload):
        event = make_event(volunteer_slots=1)
        a, b, c = helpers[:3]
        for helper in (a, b, c):
            events.signup(session, event.id, helper.id)

        events.cancel(session, event.id, b.id)
        assert statuses(session, event.id) == {
            a.id: SignupStatus.confirmed,
            b.id: SignupStatus.cancelled,
            c.id: SignupStatus.waitlist,
        }
        assert reload(Event, event.id).confirmed_count == 1

    def test_cancel_on_unlimited_event(self, session, make_event, helpers, reload):
        event = make_event(volunteer_slots=0)
        events.signup(session, event.id, helpers[0].id)
        events.cancel(session, event.id, helpers[0].id)
        assert reload(Event, event.id).confirmed_count == 0

    def test_cancel_without_signup(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        with pytest.raises(NotFound):
            events.cancel(session, event.id, helpers[0].id)

    def test_cancel_twice(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        events.signup(session, event.id, helpers[0].id)
        events.cancel(session, event.id, helpers[0].id)
        with pytest.raises(NotFound):
            events.cancel(session, event.id, helpers[0].id)

    def test_signing_up_again_joins_back_of_queue(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        a, b, c = helpers[:3]
        events.signup(session, event.id, a.id)
        events.signup(session, event.id, b.id)
        events.cancel(session, event.id, b.id)
        events.signup(session, event.id, c.id)

        assert events.signup(session, event.id, b.id) == SignupStatus.waitlist

        events.cancel(session, event.id, a.id)
        current = statuses(session, event.id)
        assert current[c.id] == SignupStatus.confirmed
        assert current[b.id] == SignupStatus.waitlist

    def test_promotion_follows_signup_time_not_id(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        holder, late, early = helpers[:3]
        events.signup(session, event.id, holder.id)

        stamp = utcnow()
        # Lower id, later timestamp.
        session.add(Signup(event_id=event.id, helper_id=late.id, status=SignupStatus.waitlist,
                           created_at=stamp + timedelta(minutes=5)))
        session.add(Signup(event_id=event.id, helper_id=early.id, status=SignupStatus.waitlist,
                           created_at=stamp + timedelta(minutes=1)))
        session.commit()

        events.cancel(session, event.id, holder.id)
        current = statuses(session, event.id)
        assert current[early.id] == SignupStatus.confirmed
        assert current[late.id] == SignupStatus.waitlist


class TestManageEvents:
    def test_create_validates(self, session, make_need, make_helper):
        need = make_need()
        start = utcnow() + timedelta(days=1)

        with pytest.raises(Forbidden):
            events.create_event(
                session, Role.helper, EventCreate(need_id=need.id, event_type=EventType.distribution, event_start=start)
            )
        with pytest.raises(NotFound):
            events.create_event(
                session, Role.manager, EventCreate(need_id=999, event_type=EventType.distribution, event_start=start)
            )
        with pytest.raises(InvalidEvent):
            events.create_event(
                session,
                Role.manager,
                EventCreate(
                    need_id=need.id,
                    event_type=EventType.kit_build,
                    event_start=start,
                    event_end=start - timedelta(hours=1),
                ),
            )

        event = events.create_event(
            session,
            Role.manager,
            EventCreate(need_id=need.id, event_type=EventType.kit_build, event_start=start, volunteer_slots=4, location=""),
        )
        assert event.volunteer_slots == 4
        assert event.confirmed_count == 0
        assert event.location is None

    def test_aware_times_are_stored_as_naive_utc(self, session, make_need, reload):
        need = make_need()
        start = datetime(2026, 11, 1, 9, 0, tzinfo=timezone(timedelta(hours=2)))
        event = events.create_event(
            session,
            Role.manager,
            EventCreate(need_id=need.id, event_type=EventType.delivery, event_start=start),
        )
        assert reload(Event, event.id).event_start == datetime(2026, 11, 1, 7, 0)

        events.update_event(
            session, Role.manager, event.id, EventUpdate(event_end=start + timedelta(hours=3))
        )
        assert reload(Event, event.id).event_end == datetime(2026, 11, 1, 10, 0)

    def test_raising_slots_promotes_waitlist(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        for helper in helpers[:3]:
            events.signup(session, event.id, helper.id)

        events.update_event(session, Role.manager, event.id, EventUpdate(volunteer_slots=2))
        capacity = events.list_for_event(session, event.id)
        assert (capacity.confirmed_count, capacity.waitlist_count) == (2, 1)
        assert statuses(session, event.id)[helpers[1].id] == SignupStatus.confirmed

    def test_unlimited_slots_promotes_everyone(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        for helper in helpers:
            events.signup(session, event.id, helper.id)

        events.update_event(session, Role.manager, event.id, EventUpdate(volunteer_slots=0))
        capacity = events.list_for_event(session, event.id)
        assert capacity.confirmed_count == len(helpers)
        assert capacity.waitlist_count == 0

    def test_slots_cannot_drop_below_confirmed(self, session, make_event, helpers, reload):
        event = make_event(volunteer_slots=3)
        for helper in helpers[:3]:
            events.signup(session, event.id, helper.id)

        with pytest.raises(SlotsBelowConfirmed):
            events.update_event(session, Role.manager, event.id, EventUpdate(volunteer_slots=2))
        assert reload(Event, event.id).volunteer_slots == 3

        updated = events.update_event(session, Role.manager, event.id, EventUpdate(volunteer_slots=3, location="Hall B"))
        assert updated.location == "Hall B"

    def test_update_rejects_empty_required_field(self, session, make_event):
        event = make_event()
        with pytest.raises(InvalidEvent):
            events.update_event(session, Role.manager, event.id, EventUpdate(event_start=None))

    def test_delete_removes_signups(self, session, make_event, helpers):
        event = make_event(volunteer_slots=1)
        events.signup(session, event.id, helpers[0].id)
        events.delete_event(session, Role.manager, event.id)

        assert session.get(Event, event.id) is None
        assert session.exec(select(Signup)).all() == []

    def test_upcoming_hides_past_and_shows_own_status(self, session, make_event, helpers):
        upcoming = make_event(volunteer_slots=2)
        make_event(event_start=utcnow() - timedelta(days=1))
        events.signup(session, upcoming.id, helpers[0].id)

        listed = events.list_upcoming_events(session, user_id=helpers[0].id)
        assert [e.id for e in listed] == [upcoming.id]
        assert listed[0].user_status == SignupStatus.confirmed
        assert listed[0].remaining_slots == 1
        assert listed[0].need_title == "Winter coats"

        assert len(events.list_upcoming_events(session, include_past=True)) == 2
