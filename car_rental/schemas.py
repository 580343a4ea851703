"""
Pydantic models for API requests and responses.

Request bodies keep their required fields optional at the schema level so
the operations can report missing fields with their own messages, in the
order the operations check them.
"""

import json
from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Response envelope
# =============================================================================

def envelope(message: str, data: Any = None, count: Optional[int] = None,
             success: bool = True, error: Optional[str] = None) -> dict:
    """Build the uniform response body, leaving out empty optional keys."""
    body = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if count is not None:
        body["count"] = count
    if error is not None:
        body["error"] = error
    return body


# =============================================================================
# Cars
# =============================================================================

class Car(BaseModel):
    id: int
    make: str
    model: str
    year: int
    category: str
    price_per_day: float
    image_url: Optional[str] = None
    availability: bool
    license_plate: str
    description: Optional[str] = None
    features: Optional[List[str]] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    seats: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("features", mode="before")
    @classmethod
    def decode_features(cls, value):
        if isinstance(value, str):
            return json.loads(value) if value else None
        return value


class AvailabilityUpdate(BaseModel):
    availability: Any = None


# =============================================================================
# Users
# =============================================================================

class User(BaseModel):
    id: int
    username: str
    email: str
    full_name: str
    phone: Optional[str] = None
    license_number: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserRegister(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserUpdate(BaseModel):
    """Profile fields a user may change; anything else in the body is ignored."""
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


# =============================================================================
# Rentals
# =============================================================================

class RentalRequest(BaseModel):
    user_id: Optional[int] = Field(None, description="Defaults to the authenticated user")
    car_id: Optional[int] = None
    pickup_date: Optional[date] = Field(None, description="Pickup date (YYYY-MM-DD)")
    return_date: Optional[date] = Field(None, description="Return date (YYYY-MM-DD)")
    pickup_location: Optional[str] = None
    return_location: Optional[str] = Field(None, description="Defaults to the pickup location")
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class Rental(BaseModel):
    id: int
    user_id: int
    car_id: int
    pickup_date: date
    return_date: date
    pickup_location: str
    return_location: Optional[str] = None
    total_amount: float
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Joined from users/cars
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    car_make: Optional[str] = None
    car_model: Optional[str] = None
    car_year: Optional[int] = None
    car_image: Optional[str] = None
    license_plate: Optional[str] = None


class RentalStatusUpdate(BaseModel):
    status: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: Optional[str] = None


class RentalStats(BaseModel):
    total_rentals: int
    active_rentals: int
    completed_rentals: int
    pending_rentals: int
    total_revenue: float


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: str
    checks: dict
