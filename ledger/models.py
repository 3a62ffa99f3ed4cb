from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, StrictInt, field_validator


class Role(str, Enum):
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_ROLE_RANK = {
    Role.REGULAR: 0,
    Role.CASHIER: 1,
    Role.MANAGER: 2,
    Role.SUPERUSER: 3,
}


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    REDEMPTION = "redemption"
    EVENT = "event"


class AmountOperator(str, Enum):
    GTE = "gte"
    LTE = "lte"


NULL_RELATED_ID = "null"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Actor(BaseModel):
    user_id: int
    role: Role

    model_config = ConfigDict(frozen=True)


class User(BaseModel):
    id: int
    utorid: str
    name: str
    role: Role = Role.REGULAR
    verified: bool = False
    suspicious: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: int
    type: TransactionType
    user_id: int
    amount: int
    spent: Optional[Decimal] = None
    related_id: Optional[int] = None
    created_by: int
    processed: Optional[bool] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    suspicious: bool = False
    remark: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_pending_redemption(self) -> bool:
        return self.type == TransactionType.REDEMPTION and not self.processed


class Event(BaseModel):
    id: int
    name: str
    description: str = ""
    location: str = ""
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    points_budget: int
    points_awarded: int = 0
    organizers: list[int] = Field(default_factory=list)
    guests: list[int] = Field(default_factory=list)
    published: bool = False
    active: bool = True
    created_by: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def points_remaining(self) -> int:
        return self.points_budget - self.points_awarded

    def is_full(self) -> bool:
        return self.capacity is not None and len(self.guests) >= self.capacity


# Transaction payloads. Point amounts are strict ints so that "10.5" or "10"
# never sneak through as a valid number of points.

class PurchaseRequest(BaseModel):
    user_id: StrictInt
    spent: Decimal = Field(..., description="Money spent, converted to points at the configured rate")
    remark: str = ""


class AdjustmentRequest(BaseModel):
    user_id: StrictInt
    amount: StrictInt
    related_id: Optional[StrictInt] = None
    allow_negative: bool = False
    remark: str = ""


class TransferRequest(BaseModel):
    recipient_id: StrictInt
    amount: StrictInt
    sender_id: Optional[StrictInt] = Field(
        default=None, description="Defaults to the acting user; set by a cashier acting on behalf of a customer"
    )
    remark: str = ""


class RedemptionRequest(BaseModel):
    amount: StrictInt
    remark: str = ""


class EventRewardRequest(BaseModel):
    event_id: StrictInt
    amount: StrictInt
    user_id: Optional[StrictInt] = Field(default=None, description="Omit to award every guest")
    remark: str = ""


TRANSACTION_REQUESTS: dict[TransactionType, type[BaseModel]] = {
    TransactionType.PURCHASE: PurchaseRequest,
    TransactionType.ADJUSTMENT: AdjustmentRequest,
    TransactionType.TRANSFER: TransferRequest,
    TransactionType.REDEMPTION: RedemptionRequest,
    TransactionType.EVENT: EventRewardRequest,
}


class TransactionFilter(BaseModel):
    user_id: Optional[int] = None
    type: Optional[TransactionType] = None
    amount: Optional[int] = None
    operator: AmountOperator = AmountOperator.GTE
    related_id: Optional[Union[int, Literal["null"]]] = None
    suspicious: Optional[bool] = None
    processed: Optional[bool] = None
    created_by: Optional[int] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    @field_validator("related_id", mode="before")
    @classmethod
    def _parse_related_id(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() == NULL_RELATED_ID:
            return NULL_RELATED_ID
        return value

    @field_validator("created_after", "created_before")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SearchResult(BaseModel):
    items: list[Transaction]
    total_count: int
    page: int
    limit: int


class LedgerHistoryResponse(BaseModel):
    user_id: int
    entries: list[Transaction]
    total_count: int
    current_balance: int


class UserBalance(BaseModel):
    user_id: int
    balance: int
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class SuspiciousRequest(BaseModel):
    suspicious: bool


class RegisterUserRequest(BaseModel):
    utorid: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: Role = Role.REGULAR


class CreateEventRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    location: str = ""
    start_time: datetime
    end_time: datetime
    capacity: Optional[StrictInt] = None
    points_budget: StrictInt

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Spring Mixer",
            "location": "BA 1160",
            "start_time": "2026-11-01T18:00:00Z",
            "end_time": "2026-11-01T21:00:00Z",
            "capacity": 50,
            "points_budget": 1000
        }
    })


class MembershipRequest(BaseModel):
    user_id: int
