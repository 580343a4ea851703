"""
Rental lifecycle manager.

Creating a rental runs a fixed sequence of checks, each of which raises on
failure: required fields, pickup not in the past, return after pickup,
no overlapping rental, car exists and its availability flag is set. Only
then is the price computed and the rental stored as ``pending``/``unpaid``.

The car availability flag follows the rental: it is cleared when a rental
is created and set again when a rental is completed, cancelled or deleted.
Those flag writes happen after the rental change is committed and are
best-effort: a failure is logged and the rental operation still succeeds.

Availability check and insert are not serialized, so two concurrent
requests for overlapping dates can both be accepted.
"""

import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .availability import TERMINAL_STATUSES, is_available
from .cars import get_car, set_car_availability
from .database import ForeignKeyViolation, RentalDB, store_errors
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .schemas import Rental, RentalRequest, RentalStats
from .security import Principal
from .telemetry import rental_counter

logger = logging.getLogger(__name__)

RENTAL_STATUSES = ("pending", "confirmed", "active", "completed", "cancelled")
PAYMENT_STATUSES = ("unpaid", "pending", "paid", "refunded")


def rental_days(pickup_date: date, return_date: date) -> int:
    return math.ceil((return_date - pickup_date) / timedelta(days=1))


def rental_payload(rental: RentalDB) -> dict:
    user, car = rental.user, rental.car
    return Rental(
        id=rental.id,
        user_id=rental.user_id,
        car_id=rental.car_id,
        pickup_date=rental.pickup_date,
        return_date=rental.return_date,
        pickup_location=rental.pickup_location,
        return_location=rental.return_location,
        total_amount=rental.total_amount,
        status=rental.status,
        payment_status=rental.payment_status,
        payment_method=rental.payment_method,
        notes=rental.notes,
        created_at=rental.created_at,
        updated_at=rental.updated_at,
        customer_name=user.full_name if user else None,
        customer_email=user.email if user else None,
        customer_phone=user.phone if user else None,
        car_make=car.make if car else None,
        car_model=car.model if car else None,
        car_year=car.year if car else None,
        car_image=car.image_url if car else None,
        license_plate=car.license_plate if car else None,
    ).model_dump(mode="json")


def _sync_car_availability(db: Session, car_id: int, available: bool) -> None:
    """Best-effort flag write that follows a committed rental change."""
    try:
        set_car_availability(db, car_id, available)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Could not update car availability for car {car_id}: {e}")


def _check_status(status: Optional[str], valid: tuple, label: str) -> None:
    if status not in valid:
        raise ValidationError(f"Invalid {label}. Valid statuses: {', '.join(valid)}")


# =============================================================================
# Queries
# =============================================================================

def _with_joins(db: Session):
    return db.query(RentalDB).options(joinedload(RentalDB.user), joinedload(RentalDB.car))


def list_rentals(db: Session) -> List[RentalDB]:
    return _with_joins(db).order_by(RentalDB.created_at.desc(), RentalDB.id.desc()).all()


def list_rentals_for_user(db: Session, user_id: int) -> List[RentalDB]:
    return (
        _with_joins(db)
        .filter(RentalDB.user_id == user_id)
        .order_by(RentalDB.created_at.desc(), RentalDB.id.desc())
        .all()
    )


def list_rentals_by_status(db: Session, status: str) -> List[RentalDB]:
    _check_status(status, RENTAL_STATUSES, "status")
    return (
        _with_joins(db)
        .filter(RentalDB.status == status)
        .order_by(RentalDB.created_at.desc(), RentalDB.id.desc())
        .all()
    )


def get_rental(db: Session, rental_id: int) -> RentalDB:
    rental = _with_joins(db).filter(RentalDB.id == rental_id).first()
    if not rental:
        raise NotFoundError("Rental not found")
    return rental


def rental_stats(db: Session) -> dict:
    row = db.query(
        func.count(RentalDB.id),
        func.count(case((RentalDB.status == "active", 1))),
        func.count(case((RentalDB.status == "completed", 1))),
        func.count(case((RentalDB.status == "pending", 1))),
        func.coalesce(func.sum(case((RentalDB.status == "completed", RentalDB.total_amount), else_=0)), 0),
    ).one()
    return RentalStats(
        total_rentals=row[0],
        active_rentals=row[1],
        completed_rentals=row[2],
        pending_rentals=row[3],
        total_revenue=float(row[4]),
    ).model_dump()


def check_availability(db: Session, car_id: int, pickup_date: Optional[date],
                       return_date: Optional[date]) -> dict:
    if not pickup_date or not return_date:
        raise ValidationError("Both pickup_date and return_date are required")
    return {
        "car_id": car_id,
        "pickup_date": pickup_date.isoformat(),
        "return_date": return_date.isoformat(),
        "available": is_available(db, car_id, pickup_date, return_date),
    }


# =============================================================================
# Lifecycle
# =============================================================================

def create_rental(db: Session, principal: Principal, request: RentalRequest) -> dict:
    """Book a car and return the new rental with its day count and car summary."""
    user_id = request.user_id if request.user_id is not None else principal.id
    if not (user_id and request.car_id and request.pickup_date and request.return_date
            and request.pickup_location):
        raise ValidationError("Required fields: user_id, car_id, pickup_date, return_date, pickup_location")
    if user_id != principal.id and not principal.is_admin:
        raise ForbiddenError("Access denied", "You can only book rentals for your own account")

    pickup_date, return_date = request.pickup_date, request.return_date
    if pickup_date < date.today():
        raise ValidationError("Pickup date cannot be in the past")
    if return_date <= pickup_date:
        raise ValidationError("Return date must be after pickup date")

    if not is_available(db, request.car_id, pickup_date, return_date):
        raise ConflictError("Car is not available for the selected dates")

    car = get_car(db, request.car_id)
    if not car.availability:
        raise ConflictError("Car is not available for rental")

    days = rental_days(pickup_date, return_date)
    total_amount = Decimal(days) * Decimal(car.price_per_day)

    rental = RentalDB(
        user_id=user_id,
        car_id=car.id,
        pickup_date=pickup_date,
        return_date=return_date,
        pickup_location=request.pickup_location,
        return_location=request.return_location or request.pickup_location,
        total_amount=total_amount,
        status="pending",
        payment_status="unpaid",
        payment_method=request.payment_method,
        notes=request.notes,
    )
    db.add(rental)
    try:
        with store_errors(db):
            db.commit()
    except ForeignKeyViolation:
        raise NotFoundError("User not found")
    db.refresh(rental)

    rental_counter.add(1, {"category": car.category})
    logger.info(f"Rental created: {rental.id}, car {car.id}, {days} days, ${total_amount}")

    result = {
        "id": rental.id,
        "user_id": rental.user_id,
        "car_id": rental.car_id,
        "pickup_date": rental.pickup_date.isoformat(),
        "return_date": rental.return_date.isoformat(),
        "pickup_location": rental.pickup_location,
        "return_location": rental.return_location,
        "total_amount": float(rental.total_amount),
        "status": rental.status,
        "payment_status": rental.payment_status,
        "payment_method": rental.payment_method,
        "notes": rental.notes,
        "days": days,
        "car_info": {"make": car.make, "model": car.model, "year": car.year},
    }

    _sync_car_availability(db, car.id, False)
    return result


def update_status(db: Session, rental_id: int, status: Optional[str]) -> RentalDB:
    """Move a rental to ``status``. Any transition is accepted."""
    _check_status(status, RENTAL_STATUSES, "status")
    rental = get_rental(db, rental_id)

    previous = rental.status
    rental.status = status
    db.commit()
    logger.info(f"Rental {rental_id} status: {previous} -> {status}")

    if status in TERMINAL_STATUSES:
        _sync_car_availability(db, rental.car_id, True)
    return rental


def update_payment_status(db: Session, rental_id: int, payment_status: Optional[str]) -> RentalDB:
    _check_status(payment_status, PAYMENT_STATUSES, "payment status")
    rental = get_rental(db, rental_id)

    rental.payment_status = payment_status
    db.commit()
    logger.info(f"Rental {rental_id} payment status: {payment_status}")
    return rental


def delete_rental(db: Session, rental_id: int) -> None:
    rental = get_rental(db, rental_id)
    car_id = rental.car_id

    db.delete(rental)
    db.commit()
    logger.info(f"Rental deleted: {rental_id}")

    _sync_car_availability(db, car_id, True)
