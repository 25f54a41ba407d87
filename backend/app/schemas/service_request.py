from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, computed_field, field_validator

from app.core.config import get_settings
from app.utils.clock import as_utc

# Largest value a numeric(12, 2) column holds.
MAX_BUDGET = 9_999_999_999.99


class RequestState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class TransitionEvent(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"


class ActorRole(str, Enum):
    CLIENT = "client"
    PROFESSIONAL = "professional"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EventKind(str, Enum):
    NEW_REQUEST = "NewRequest"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


def format_request_code(request_id: int, requested_at: datetime) -> str:
    return f"SR-{requested_at.year}-{request_id:06d}"


class ServiceRequestCreate(BaseModel):
    """Creation input. Field order is the order in which problems are reported."""

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: int = Field(gt=0)
    professional_id: int = Field(gt=0)
    description: str
    estimated_budget: float = Field(default=0, ge=0, le=MAX_BUDGET, allow_inf_nan=False)
    address: str
    district: str
    service_date: datetime
    postal_code: Optional[str] = None
    reference: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    additional_notes: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)

    @field_validator("description", "address", "district")
    @classmethod
    def _required_text(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("description")
    @classmethod
    def _description_length(cls, value: str) -> str:
        limit = get_settings().description_max_length
        if len(value) > limit:
            raise ValueError(f"must be at most {limit} characters")
        return value

    @field_validator("service_date")
    @classmethod
    def _not_in_the_past(cls, value: datetime, info: ValidationInfo) -> datetime:
        # "today" comes from the caller's clock; without it the date is not checked.
        today: Optional[date] = (info.context or {}).get("today")
        if today is not None and as_utc(value).date() < today:
            raise ValueError("must not be in the past")
        return value

    @field_validator("postal_code", "reference", "additional_notes")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("photo_urls", mode="before")
    @classmethod
    def _photos_default(cls, value):
        if value is None:
            return []
        return value

    @field_validator("photo_urls")
    @classmethod
    def _photos_non_blank(cls, value: List[str]) -> List[str]:
        if any(not url.strip() for url in value):
            raise ValueError("photo URLs must not be empty")
        limit = get_settings().max_photos_per_request
        if len(value) > limit:
            raise ValueError(f"at most {limit} photos may be attached")
        return [url.strip() for url in value]


class ServiceRequestView(BaseModel):
    """Immutable snapshot of a stored service request."""

    model_config = ConfigDict(frozen=True)

    id: int
    client_id: int
    professional_id: int
    description: str
    estimated_budget: float
    address: str
    district: str
    postal_code: Optional[str] = None
    reference: Optional[str] = None
    service_date: datetime
    urgency: Urgency
    additional_notes: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)
    state: RequestState
    requested_at: datetime
    responded_at: Optional[datetime] = None
    updated_at: datetime
    active: bool

    @computed_field
    @property
    def request_code(self) -> str:
        return format_request_code(self.id, self.requested_at)


class ServiceRequestOut(ServiceRequestView):
    available_events: List[TransitionEvent] = Field(default_factory=list)


class ServiceRequestListResponse(BaseModel):
    items: List[ServiceRequestOut]
    total: int


class TransitionBody(BaseModel):
    event: str


class PendingCountResponse(BaseModel):
    professional_id: int
    count: int
