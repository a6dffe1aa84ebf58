from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    # Naive UTC everywhere; the datetime columns are declared timezone=False to match.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    helper = "helper"
    manager = "manager"


class Priority(str, Enum):
    normal = "normal"
    high = "high"
    urgent = "urgent"


class BundleTag(str, Enum):
    basic_food = "basic_food"
    winter_clothing = "winter_clothing"
    hygiene_kit = "hygiene_kit"
    cleaning_supplies = "cleaning_supplies"
    beautification = "beautification"
    other = "other"


class EventType(str, Enum):
    delivery = "delivery"
    kit_build = "kit_build"
    cleanup = "cleanup"
    distribution = "distribution"


class SignupStatus(str, Enum):
    confirmed = "confirmed"
    waitlist = "waitlist"
    cancelled = "cancelled"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    role: Role = Role.helper
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))


class Need(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    manager_id: int = Field(foreign_key="user.id")

    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    quantity: int
    # Only services.registry.increment_fulfilled writes this.
    quantity_fulfilled: int = 0

    priority: Priority = Priority.normal
    needed_by: Optional[date] = None
    is_perishable: bool = False
    request_count: int = 0
    bundle_tag: BundleTag = BundleTag.other
    service_required: bool = False

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))

    @property
    def remaining(self) -> int:
        return max(0, self.quantity - self.quantity_fulfilled)


class BasketLine(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("helper_id", "need_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    helper_id: int = Field(foreign_key="user.id", index=True)
    need_id: int = Field(foreign_key="need.id")

    quantity: int
    added_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))


class FundingRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    need_id: int = Field(foreign_key="need.id", index=True)
    helper_id: int = Field(foreign_key="user.id", index=True)

    quantity: int
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))


class Event(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    need_id: int = Field(foreign_key="need.id", index=True)

    event_type: EventType
    event_start: datetime = Field(sa_type=DateTime(timezone=False))
    event_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=False))
    location: Optional[str] = None
    volunteer_slots: int = 0  # 0 = unlimited
    notes: Optional[str] = None

    # Only services.counters writes this.
    confirmed_count: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))


class Signup(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("event_id", "helper_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    helper_id: int = Field(foreign_key="user.id")

    status: SignupStatus = SignupStatus.confirmed
    # FIFO key for waitlist promotion
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=False))
