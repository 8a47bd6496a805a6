from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.domain.identity import is_valid_email


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MemberResponse(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str


class IdentityResponse(CamelModel):
    has_identity: bool
    member: Optional[MemberResponse] = None


class EventResponse(CamelModel):
    slug: str
    title: str
    starts_at: str
    location_name: str
    capacity: int
    price_cents: Optional[int] = None
    remaining_seats: int


class ReservationCreateRequest(CamelModel):
    event_slug: str = Field(min_length=1, max_length=128)
    notes: Optional[str] = Field(default=None, max_length=1000)


class ReservationCreateResponse(CamelModel):
    reservation_id: str
    status: str


class ReservationResponse(CamelModel):
    id: str
    status: str
    event_slug: str
    event_title: str
    event_starts_at: str
    guests: int
    notes: Optional[str] = None
    confirmation_code: Optional[str] = None
    paid_at: Optional[str] = None


class ReservationPatchRequest(CamelModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_email(value):
            raise ValueError("Email non valida")
        return value


class OkResponse(BaseModel):
    ok: bool = True


class PaymentStatusResponse(BaseModel):
    configured: bool
    missing: list[str]


class CreateOrderRequest(CamelModel):
    reservation_id: str = Field(min_length=1)


class CreateOrderResponse(CamelModel):
    order_id: str


class CaptureRequest(CamelModel):
    reservation_id: str = Field(min_length=1)
    order_id: str = Field(min_length=1, max_length=64)


class CaptureResponse(CamelModel):
    ok: bool = True
    confirmation_code: str
