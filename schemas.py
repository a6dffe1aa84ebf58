from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BundleTag, EventType, Priority, Role, SignupStatus


class LoginData(BaseModel):
    username: str = Field(min_length=1, max_length=50)


class UserRead(BaseModel):
    id: int
    username: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class UserActivity(BaseModel):
    user: UserRead
    funded_quantity: int
    funded_amount: Decimal
    confirmed_events: int
    waitlisted_events: int


# --- needs -----------------------------------------------------------------


class NeedCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    cost: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    quantity: int = Field(ge=1)
    priority: Priority = Priority.normal
    needed_by: Optional[date] = None
    is_perishable: bool = False
    request_count: int = Field(default=0, ge=0)
    bundle_tag: BundleTag = BundleTag.other
    service_required: bool = False


class NeedUpdate(BaseModel):
    """Partial update. There is no quantity_fulfilled field."""

    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    quantity: Optional[int] = Field(default=None, ge=1)
    priority: Optional[Priority] = None
    needed_by: Optional[date] = None
    is_perishable: Optional[bool] = None
    request_count: Optional[int] = Field(default=None, ge=0)
    bundle_tag: Optional[BundleTag] = None
    service_required: Optional[bool] = None


class NeedRead(BaseModel):
    id: int
    manager_id: int
    title: str
    description: Optional[str]
    category: Optional[str]
    cost: Decimal
    quantity: int
    quantity_fulfilled: int
    remaining: int
    priority: Priority
    needed_by: Optional[date]
    is_perishable: bool
    request_count: int
    bundle_tag: BundleTag
    service_required: bool
    created_at: datetime
    urgency_score: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class NeedSnapshot(BaseModel):
    """The slice of a need shown next to a basket line."""

    id: int
    title: str
    cost: Decimal
    quantity: int
    quantity_fulfilled: int
    remaining: int
    priority: Priority

    model_config = ConfigDict(from_attributes=True)


# --- basket ----------------------------------------------------------------


class BasketAdd(BaseModel):
    need_id: int
    # Passed through uncoerced; services.registry.validate_quantity decides.
    quantity: Any = Field(json_schema_extra={"type": "integer", "minimum": 1})


class BasketQuantityUpdate(BaseModel):
    quantity: Any = Field(json_schema_extra={"type": "integer", "minimum": 1})


class BasketLineRead(BaseModel):
    id: int
    need_id: int
    quantity: int
    added_at: datetime
    line_total: Decimal
    need: NeedSnapshot


class BasketRead(BaseModel):
    count: int
    lines: List[BasketLineRead]
    grand_total: Decimal


# --- funding ---------------------------------------------------------------


class CommittedLine(BaseModel):
    need_id: int
    funding_record_id: int
    requested: int
    committed: int
    amount: Decimal


class DroppedLine(BaseModel):
    need_id: int
    requested: int
    committed: int
    reason: Literal["fully_funded", "lost_race", "need_removed", "reduced"]


class CheckoutResult(BaseModel):
    committed: List[CommittedLine]
    dropped: List[DroppedLine]
    total_amount: Decimal

    @property
    def is_partial(self) -> bool:
        return bool(self.dropped)


class FundingRecordRead(BaseModel):
    id: int
    need_id: int
    helper_id: int
    quantity: int
    amount: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FundingHistory(BaseModel):
    count: int
    records: List[FundingRecordRead]
    total_amount: Decimal
    total_quantity: int


# --- events ----------------------------------------------------------------


class EventCreate(BaseModel):
    need_id: int
    event_type: EventType
    event_start: datetime
    event_end: Optional[datetime] = None
    location: Optional[str] = None
    volunteer_slots: int = 0
    notes: Optional[str] = None


class EventUpdate(BaseModel):
    need_id: Optional[int] = None
    event_type: Optional[EventType] = None
    event_start: Optional[datetime] = None
    event_end: Optional[datetime] = None
    location: Optional[str] = None
    volunteer_slots: Optional[int] = None
    notes: Optional[str] = None


class EventCapacity(BaseModel):
    confirmed_count: int
    waitlist_count: int
    remaining_slots: Optional[int]


class EventRead(BaseModel):
    id: int
    need_id: int
    need_title: Optional[str] = None
    event_type: EventType
    event_start: datetime
    event_end: Optional[datetime]
    location: Optional[str]
    volunteer_slots: int
    notes: Optional[str]
    confirmed_count: int
    waitlist_count: int
    remaining_slots: Optional[int]
    user_status: Optional[SignupStatus] = None


class SignupResult(BaseModel):
    event_id: int
    status: SignupStatus
    message: str
