"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegisterRequest(BaseModel):
    """Request schema for registering a child for the event."""

    first_name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    sex: Literal["male", "female"]
    date_of_birth: str = Field(
        ..., pattern=r"^\d{2}/\d{2}/\d{4}$", description="Date of birth (MM/DD/YYYY)"
    )
    age: int = Field(..., ge=0, le=150)
    state_of_residence: str = Field(..., min_length=1, max_length=100)
    state_of_origin: str = Field(..., min_length=1, max_length=100)
    position_of_play: str = Field(..., min_length=1, max_length=100)
    guardian_full_name: str = Field(..., min_length=1, max_length=200)
    guardian_phone_number: str = Field(..., min_length=10, max_length=32)
    email: Optional[str] = Field(
        default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255
    )

    @field_validator("first_name", "surname", "guardian_full_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "first_name": "Tobi",
                    "surname": "Adeyemi",
                    "sex": "male",
                    "date_of_birth": "04/17/2013",
                    "age": 11,
                    "state_of_residence": "Lagos",
                    "state_of_origin": "Oyo",
                    "position_of_play": "Midfielder",
                    "guardian_full_name": "Kemi Adeyemi",
                    "guardian_phone_number": "08012345678",
                    "email": "kemi@example.com",
                }
            ]
        }
    }


class RegisterResponse(BaseModel):
    """Response schema for a new registration."""

    registration_id: UUID
    reference: str = Field(..., description="Payment reference for this registration")
    event_name: str
    amount: int = Field(..., description="Fee in minor currency units")
    currency: str


class InitializePaymentRequest(BaseModel):
    """Request schema for starting Paystack checkout."""

    registration_id: UUID
    reference: str = Field(..., min_length=1, max_length=64)


class InitializePaymentResponse(BaseModel):
    """Response schema for Paystack checkout."""

    authorization_url: str
    reference: str


class VerifyPaymentResponse(BaseModel):
    """Response schema for payment verification. ``amount`` is in major units."""

    success: bool
    message: str
    reference: str
    status: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    registration_id: Optional[UUID] = None


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Paystack."""

    status: str = "ok"
    outcome: str


class ReceiptResponse(BaseModel):
    """Response schema for a payment receipt. ``amount`` is in major units."""

    receipt_number: str
    name: str
    guardian_name: str
    email: Optional[str] = None
    event: str
    amount: float
    currency: str
    paid_at: datetime
    channel: str


class ReceiptStatusResponse(BaseModel):
    """Response schema for receipt validity."""

    valid: bool
    status: str


class EventResponse(BaseModel):
    """Response schema for the event."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str
    amount: int = Field(..., description="Fee in minor currency units")
    currency: str
    is_active: bool
    created_at: datetime


class CreateEventRequest(BaseModel):
    """Request schema for creating the event."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0, description="Fee in minor currency units")
    currency: str = Field(default="NGN", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        return v.upper()


class UpdateEventAmountRequest(BaseModel):
    """Request schema for changing the event fee."""

    amount: int = Field(..., gt=0, description="Fee in minor currency units")


class SweepResponse(BaseModel):
    """Response schema for a pending payment sweep."""

    examined: int
    settled: int
    already_paid: int
    not_successful: int
    failed: int


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str
    checks: Dict[str, Any] = Field(default_factory=dict)
