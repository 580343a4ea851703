"""
JSON API routers mounted under ``/api``.

Every response uses the envelope built by ``schemas.envelope``. Errors are
raised as ``errors.ApiError`` subclasses and rendered by the handlers
registered in ``app.create_app``.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from . import cars, rentals, users
from .database import get_db
from .errors import ValidationError
from .schemas import (
    AvailabilityUpdate, LoginRequest, PasswordChange, PaymentStatusUpdate, RentalRequest,
    RentalStatusUpdate, UserRegister, UserUpdate, envelope,
)
from .security import Principal, get_admin_user, get_current_user, require_owner_or_admin
from .telemetry import tracer

logger = logging.getLogger(__name__)

cars_router = APIRouter(prefix="/api/cars", tags=["Cars"])
users_router = APIRouter(prefix="/api/users", tags=["Users"])
rentals_router = APIRouter(prefix="/api/rentals", tags=["Rentals"])


def _base_url(request: Request) -> str:
    return str(request.base_url)


# =============================================================================
# Cars
# =============================================================================

def car_form(
    make: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price_per_day: Optional[str] = Form(None),
    license_plate: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    features: Optional[str] = Form(None, description="JSON list, e.g. [\"AC\", \"GPS\"]"),
    fuel_type: Optional[str] = Form(None),
    transmission: Optional[str] = Form(None),
    seats: Optional[str] = Form(None),
) -> dict:
    """Car fields as submitted in a multipart or urlencoded form."""
    return {
        "make": make,
        "model": model,
        "year": year,
        "category": category,
        "price_per_day": price_per_day,
        "license_plate": license_plate,
        "description": description,
        "features": features,
        "fuel_type": fuel_type,
        "transmission": transmission,
        "seats": seats,
    }


@contextmanager
def _staged_image(request: Request, data: dict, image: Optional[UploadFile]):
    """Save an uploaded image into ``data`` and remove it again if the block fails."""
    upload_dir = request.app.state.config.UPLOAD_DIR
    if image is None or not image.filename:
        yield data
        return

    data["image_url"] = cars.save_car_image(image, upload_dir)
    try:
        yield data
    except Exception:
        cars.discard_car_image(data["image_url"], upload_dir)
        raise


@cars_router.get("")
async def list_cars(request: Request, db: Session = Depends(get_db)):
    """Get all cars, newest first."""
    fleet = [cars.car_payload(car, _base_url(request)) for car in cars.list_cars(db)]
    return envelope("Cars fetched successfully", fleet, count=len(fleet))


@cars_router.get("/available")
async def list_available_cars(request: Request, db: Session = Depends(get_db)):
    fleet = [cars.car_payload(car, _base_url(request)) for car in cars.list_available_cars(db)]
    return envelope("Available cars fetched successfully", fleet, count=len(fleet))


@cars_router.get("/search")
async def search_cars(request: Request, q: Optional[str] = None, db: Session = Depends(get_db)):
    """Search available cars by make, model or category."""
    found = [cars.car_payload(car, _base_url(request)) for car in cars.search_cars(db, q)]
    return envelope(f"Search results for '{q.strip()}'", found, count=len(found))


@cars_router.get("/category/{category}")
async def list_cars_by_category(category: str, request: Request, db: Session = Depends(get_db)):
    found = [cars.car_payload(car, _base_url(request)) for car in cars.list_cars_by_category(db, category)]
    return envelope(f"Cars in category '{category}' fetched successfully", found, count=len(found))


@cars_router.get("/{car_id}")
async def get_car(car_id: int, request: Request, db: Session = Depends(get_db)):
    car = cars.get_car(db, car_id)
    return envelope("Car fetched successfully", cars.car_payload(car, _base_url(request)))


@cars_router.post("", status_code=201)
async def create_car(
    request: Request,
    data: dict = Depends(car_form),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    admin: Principal = Depends(get_admin_user),
):
    """Add a car to the fleet (admin only)."""
    with tracer.start_as_current_span("create_car") as span:
        span.set_attribute("user.id", admin.id)
        with _staged_image(request, data, image):
            car = cars.create_car(db, data)
        span.set_attribute("car.id", car.id)
        return envelope("Car created successfully", cars.car_payload(car, _base_url(request)))


@cars_router.put("/{car_id}")
async def update_car(
    car_id: int,
    request: Request,
    data: dict = Depends(car_form),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    admin: Principal = Depends(get_admin_user),
):
    """Update the provided, non-empty car fields (admin only)."""
    with _staged_image(request, data, image):
        car = cars.update_car(db, car_id, data)
    return envelope("Car updated successfully", cars.car_payload(car, _base_url(request)))


@cars_router.patch("/{car_id}/availability")
async def update_car_availability(
    car_id: int,
    payload: AvailabilityUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(get_admin_user),
):
    """Override a car's availability flag (admin only)."""
    if not isinstance(payload.availability, bool):
        raise ValidationError("Availability must be a boolean value")
    cars.get_car(db, car_id)
    cars.set_car_availability(db, car_id, payload.availability)
    return envelope(f"Car {'enabled' if payload.availability else 'disabled'} successfully")


@cars_router.delete("/{car_id}")
async def delete_car(car_id: int, db: Session = Depends(get_db), admin: Principal = Depends(get_admin_user)):
    cars.delete_car(db, car_id)
    return envelope("Car deleted successfully")


# =============================================================================
# Users
# =============================================================================

@users_router.post("/register", status_code=201)
async def register_user(payload: UserRegister, request: Request, db: Session = Depends(get_db)):
    user = users.register_user(db, payload.model_dump(), request.app.state.config)
    return envelope("User registered successfully", users.user_payload(user))


@users_router.post("/login")
async def login_user(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    result = users.login(db, payload.email, payload.password, request.app.state.config)
    return envelope("Login successful", result)


@users_router.post("/admin/login")
async def login_admin(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    result = users.login(db, payload.email, payload.password, request.app.state.config, admin_only=True)
    return envelope("Admin login successful", result)


@users_router.get("")
async def list_users(db: Session = Depends(get_db), admin: Principal = Depends(get_admin_user)):
    """Get all users (admin only)."""
    found = [users.user_payload(user) for user in users.list_users(db)]
    return envelope("Users fetched successfully", found, count=len(found))


@users_router.get("/{user_id}")
async def get_user(user_id: int, db: Session = Depends(get_db),
                   principal: Principal = Depends(get_current_user)):
    require_owner_or_admin(principal, user_id)
    return envelope("User fetched successfully", users.user_payload(users.get_user(db, user_id)))


@users_router.put("/{user_id}")
async def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db),
                      principal: Principal = Depends(get_current_user)):
    """Update profile fields. Password and role cannot be changed here."""
    require_owner_or_admin(principal, user_id)
    user = users.update_user(db, user_id, payload.model_dump())
    return envelope("User updated successfully", users.user_payload(user))


@users_router.post("/{user_id}/change-password")
async def change_password(user_id: int, payload: PasswordChange, request: Request,
                          db: Session = Depends(get_db),
                          principal: Principal = Depends(get_current_user)):
    require_owner_or_admin(principal, user_id)
    users.change_password(db, user_id, payload.current_password, payload.new_password,
                          request.app.state.config)
    return envelope("Password changed successfully")


# =============================================================================
# Rentals
# =============================================================================

@rentals_router.get("")
async def list_rentals(db: Session = Depends(get_db), admin: Principal = Depends(get_admin_user)):
    """Get all rentals (admin only)."""
    found = [rentals.rental_payload(rental) for rental in rentals.list_rentals(db)]
    return envelope("Rentals fetched successfully", found, count=len(found))


@rentals_router.get("/stats")
async def rental_stats(db: Session = Depends(get_db), admin: Principal = Depends(get_admin_user)):
    return envelope("Rental statistics fetched successfully", rentals.rental_stats(db))


@rentals_router.get("/check-availability/{car_id}")
async def check_availability(
    car_id: int,
    pickup_date: Optional[date] = None,
    return_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    """Check whether a car is free between two dates (inclusive)."""
    with tracer.start_as_current_span("check_availability") as span:
        span.set_attribute("car.id", car_id)
        result = rentals.check_availability(db, car_id, pickup_date, return_date)
        span.set_attribute("car.available", result["available"])
        return envelope("Availability checked successfully", result)


@rentals_router.get("/status/{status}")
async def list_rentals_by_status(status: str, db: Session = Depends(get_db),
                                 admin: Principal = Depends(get_admin_user)):
    found = [rentals.rental_payload(rental) for rental in rentals.list_rentals_by_status(db, status)]
    return envelope(f"Rentals with status '{status}' fetched successfully", found, count=len(found))


@rentals_router.get("/user/{user_id}")
async def list_user_rentals(user_id: int, db: Session = Depends(get_db),
                            principal: Principal = Depends(get_current_user)):
    require_owner_or_admin(principal, user_id)
    found = [rentals.rental_payload(rental) for rental in rentals.list_rentals_for_user(db, user_id)]
    return envelope("User rentals fetched successfully", found, count=len(found))


@rentals_router.get("/{rental_id}")
async def get_rental(rental_id: int, db: Session = Depends(get_db),
                     principal: Principal = Depends(get_current_user)):
    """Retrieve rental details; customers may only see their own rentals."""
    rental = rentals.get_rental(db, rental_id)
    require_owner_or_admin(principal, rental.user_id)
    return envelope("Rental fetched successfully", rentals.rental_payload(rental))


@rentals_router.post("", status_code=201)
async def create_rental(payload: RentalRequest, db: Session = Depends(get_db),
                        principal: Principal = Depends(get_current_user)):
    """Create a new car rental booking."""
    with tracer.start_as_current_span("create_rental") as span:
        span.set_attribute("user.id", principal.id)
        if payload.car_id is not None:
            span.set_attribute("car.id", payload.car_id)
        rental = rentals.create_rental(db, principal, payload)
        span.set_attribute("rental.id", rental["id"])
        return envelope("Rental created successfully", rental)


@rentals_router.patch("/{rental_id}/status")
async def update_rental_status(rental_id: int, payload: RentalStatusUpdate, db: Session = Depends(get_db),
                               admin: Principal = Depends(get_admin_user)):
    with tracer.start_as_current_span("update_rental_status") as span:
        span.set_attribute("rental.id", rental_id)
        rentals.update_status(db, rental_id, payload.status)
        return envelope(f"Rental status updated to '{payload.status}' successfully")


@rentals_router.patch("/{rental_id}/payment")
async def update_payment_status(rental_id: int, payload: PaymentStatusUpdate, db: Session = Depends(get_db),
                                admin: Principal = Depends(get_admin_user)):
    rentals.update_payment_status(db, rental_id, payload.payment_status)
    return envelope(f"Payment status updated to '{payload.payment_status}' successfully")


@rentals_router.delete("/{rental_id}")
async def delete_rental(rental_id: int, db: Session = Depends(get_db),
                        admin: Principal = Depends(get_admin_user)):
    with tracer.start_as_current_span("delete_rental") as span:
        span.set_attribute("rental.id", rental_id)
        rentals.delete_rental(db, rental_id)
        return envelope("Rental deleted successfully")
