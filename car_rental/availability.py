"""
Availability checker.

A car is bookable for ``[pickup_date, return_date]`` when no rental of that
car outside the terminal statuses intersects the range. Bounds are
inclusive: a rental returned on day D conflicts with one picked up on day D.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from .database import RentalDB

TERMINAL_STATUSES = ("cancelled", "completed")


def find_conflicts(
    db: Session,
    car_id: int,
    pickup_date: date,
    return_date: date,
    exclude_rental_id: Optional[int] = None,
) -> List[RentalDB]:
    """Return the non-terminal rentals of ``car_id`` that overlap the range."""
    query = db.query(RentalDB).filter(
        RentalDB.car_id == car_id,
        RentalDB.status.notin_(TERMINAL_STATUSES),
        RentalDB.pickup_date <= return_date,
        RentalDB.return_date >= pickup_date,
    )
    if exclude_rental_id is not None:
        query = query.filter(RentalDB.id != exclude_rental_id)
    return query.all()


def is_available(
    db: Session,
    car_id: int,
    pickup_date: date,
    return_date: date,
    exclude_rental_id: Optional[int] = None,
) -> bool:
    """Check if a car is free for the given date range."""
    return not find_conflicts(db, car_id, pickup_date, return_date, exclude_rental_id)
