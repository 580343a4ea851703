"""
Car inventory operations.

Form submissions arrive as strings, so create and update coerce the numeric
fields and decode the JSON feature list before anything reaches the store.
"""

import json
import logging
import shutil
import uuid
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from fastapi import UploadFile
from sqlalchemy import delete, or_, update
from sqlalchemy.orm import Session

from .database import CarDB, ForeignKeyViolation, UniqueViolation, store_errors, utcnow
from .errors import ConflictError, NotFoundError, ReferentialIntegrityError, ValidationError
from .schemas import Car

logger = logging.getLogger(__name__)

REQUIRED_CAR_FIELDS = ("make", "model", "year", "category", "price_per_day", "license_plate")
OPTIONAL_CAR_FIELDS = ("image_url", "description", "features", "fuel_type", "transmission", "seats")
CAR_FIELDS = REQUIRED_CAR_FIELDS + OPTIONAL_CAR_FIELDS

DEMO_CARS = [
    {"make": "Toyota", "model": "Corolla", "year": 2023, "category": "Compact", "price_per_day": "45.00",
     "license_plate": "DEMO-001", "features": ["AC", "Bluetooth", "Backup Camera"], "transmission": "Automatic"},
    {"make": "Honda", "model": "Civic", "year": 2022, "category": "Compact", "price_per_day": "47.50",
     "license_plate": "DEMO-002", "features": ["AC", "Bluetooth", "USB Charging"]},
    {"make": "Toyota", "model": "RAV4", "year": 2024, "category": "SUV", "price_per_day": "75.00",
     "license_plate": "DEMO-003", "features": ["AC", "AWD", "Roof Rails"], "transmission": "Automatic"},
    {"make": "Ford", "model": "Mustang Convertible", "year": 2023, "category": "Convertible", "price_per_day": "95.00",
     "license_plate": "DEMO-004", "features": ["Convertible Top", "Sport Mode"], "seats": 4},
    {"make": "BMW", "model": "5 Series", "year": 2024, "category": "Premium", "price_per_day": "120.00",
     "license_plate": "DEMO-005", "features": ["Leather Seats", "Navigation"], "fuel_type": "Diesel",
     "transmission": "Automatic"},
]


# =============================================================================
# Field coercion
# =============================================================================

def _to_int(name: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a whole number")


def _to_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("price_per_day must be a number")
    if not price.is_finite() or price < 0:
        raise ValidationError("price_per_day must be a non-negative number")
    return price.quantize(Decimal("0.01"))


def _encode_features(value) -> str:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("features must be a JSON list of strings")
    if not isinstance(value, list):
        raise ValidationError("features must be a JSON list of strings")
    return json.dumps([str(item) for item in value])


def clean_car_fields(data: dict) -> dict:
    """Keep known, non-empty fields and convert them to their stored types."""
    clean = {}
    for key, value in data.items():
        if key not in CAR_FIELDS or value is None or value == "":
            continue
        if key in ("year", "seats"):
            clean[key] = _to_int(key, value)
        elif key == "price_per_day":
            clean[key] = _to_price(value)
        elif key == "features":
            clean[key] = _encode_features(value)
        else:
            clean[key] = value
    return clean


def car_payload(car: CarDB, base_url: Optional[str] = None) -> dict:
    """Serialize a car, expanding a stored upload path into an absolute URL."""
    data = Car.model_validate(car).model_dump(mode="json")
    if data["image_url"] and base_url and data["image_url"].startswith("/"):
        data["image_url"] = f"{base_url.rstrip('/')}{data['image_url']}"
    return data


# =============================================================================
# Images
# =============================================================================

def save_car_image(image: UploadFile, upload_dir: str) -> str:
    """Store an uploaded image and return the path it is served under."""
    if not (image.content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed")

    target_dir = Path(upload_dir) / "cars"
    target_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(image.filename or "").suffix.lower()
    filename = f"car-{uuid.uuid4().hex}{suffix}"

    with open(target_dir / filename, "wb") as out:
        shutil.copyfileobj(image.file, out)

    logger.info(f"Stored car image {filename}")
    return f"/uploads/cars/{filename}"


def discard_car_image(image_url: str, upload_dir: str) -> None:
    """Delete a stored image that no car ended up referencing."""
    path = Path(upload_dir) / "cars" / Path(image_url).name
    path.unlink(missing_ok=True)
    logger.info(f"Discarded car image {path.name}")


# =============================================================================
# Queries
# =============================================================================

def list_cars(db: Session) -> List[CarDB]:
    return db.query(CarDB).order_by(CarDB.created_at.desc(), CarDB.id.desc()).all()


def list_available_cars(db: Session) -> List[CarDB]:
    return (
        db.query(CarDB)
        .filter(CarDB.availability == True)  # noqa: E712
        .order_by(CarDB.created_at.desc(), CarDB.id.desc())
        .all()
    )


def list_cars_by_category(db: Session, category: str) -> List[CarDB]:
    return db.query(CarDB).filter(CarDB.category == category, CarDB.availability == True).all()  # noqa: E712


def search_cars(db: Session, term: Optional[str]) -> List[CarDB]:
    """Available cars whose make, model or category contains ``term``."""
    term = (term or "").strip()
    if not term:
        raise ValidationError("Search term is required")
    pattern = f"%{term}%"
    return (
        db.query(CarDB)
        .filter(
            or_(CarDB.make.ilike(pattern), CarDB.model.ilike(pattern), CarDB.category.ilike(pattern)),
            CarDB.availability == True,  # noqa: E712
        )
        .all()
    )


def get_car(db: Session, car_id: int) -> CarDB:
    car = db.get(CarDB, car_id)
    if not car:
        raise NotFoundError("Car not found")
    return car


# =============================================================================
# Mutations
# =============================================================================

def create_car(db: Session, data: dict) -> CarDB:
    missing = [name for name in REQUIRED_CAR_FIELDS if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Required fields: {', '.join(REQUIRED_CAR_FIELDS)}")

    fields = clean_car_fields(data)
    fields.setdefault("seats", 5)
    car = CarDB(**fields)
    db.add(car)
    try:
        with store_errors(db):
            db.commit()
    except UniqueViolation:
        raise ConflictError("License plate already exists")

    db.refresh(car)
    logger.info(f"Car created: {car.id} ({car.make} {car.model}, {car.license_plate})")
    return car


def update_car(db: Session, car_id: int, data: dict) -> CarDB:
    car = get_car(db, car_id)
    fields = clean_car_fields(data)
    if not fields:
        raise ValidationError("No fields to update")

    for key, value in fields.items():
        setattr(car, key, value)
    try:
        with store_errors(db):
            db.commit()
    except UniqueViolation:
        raise ConflictError("License plate already exists")

    db.refresh(car)
    logger.info(f"Car updated: {car.id} fields={sorted(fields)}")
    return car


def set_car_availability(db: Session, car_id: int, available: bool) -> bool:
    """Write the availability flag. Returns False when the car does not exist."""
    result = db.execute(
        update(CarDB)
        .where(CarDB.id == car_id)
        .values(availability=available, updated_at=utcnow())
    )
    db.commit()
    logger.info(f"Car {car_id} availability set to {available}")
    return result.rowcount > 0


def delete_car(db: Session, car_id: int) -> None:
    try:
        with store_errors(db):
            result = db.execute(delete(CarDB).where(CarDB.id == car_id))
            db.commit()
    except ForeignKeyViolation:
        raise ReferentialIntegrityError("Cannot delete car with existing rentals")

    if result.rowcount == 0:
        raise NotFoundError("Car not found")
    logger.info(f"Car deleted: {car_id}")


def seed_demo_cars(db: Session) -> None:
    """Seed the fleet with a few demo cars when it is empty."""
    existing = db.query(CarDB).count()
    if existing > 0:
        logger.info(f"Database already has {existing} cars, skipping seed")
        return

    for car in DEMO_CARS:
        db.add(CarDB(**clean_car_fields(car)))
    db.commit()
    logger.info(f"Seeded {len(DEMO_CARS)} demo cars")
