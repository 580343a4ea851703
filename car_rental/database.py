"""
Persistence layer: SQLAlchemy models, the database handle and typed store
errors.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from fastapi import Request
from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text,
    create_engine, event,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Models
# =============================================================================

class CarDB(Base):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    make = Column(String(50), nullable=False)
    model = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    category = Column(String(30), nullable=False, index=True)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    image_url = Column(String(255), nullable=True)
    availability = Column(Boolean, nullable=False, default=True, index=True)
    license_plate = Column(String(20), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    features = Column(Text, nullable=True)  # JSON array
    fuel_type = Column(String(20), default="Petrol")
    transmission = Column(String(20), default="Manual")
    seats = Column(Integer, default=5)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    rentals = relationship("RentalDB", back_populates="car", passive_deletes="all")


class UserDB(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    password = Column(String(255), nullable=False)  # bcrypt hash
    full_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    license_number = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="customer")  # customer, admin
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    rentals = relationship("RentalDB", back_populates="user", passive_deletes=True)


class RentalDB(Base):
    __tablename__ = "rentals"
    __table_args__ = (
        Index("idx_rentals_dates", "pickup_date", "return_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    car_id = Column(Integer, ForeignKey("cars.id", ondelete="RESTRICT"), nullable=False, index=True)
    pickup_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=False)
    pickup_location = Column(String(255), nullable=False)
    return_location = Column(String(255), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, confirmed, active, completed, cancelled
    payment_status = Column(String(20), nullable=False, default="unpaid")  # unpaid, pending, paid, refunded
    payment_method = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("UserDB", back_populates="rentals")
    car = relationship("CarDB", back_populates="rentals")


# =============================================================================
# Store errors
# =============================================================================

class StoreError(Exception):
    """Constraint failure reported by the database."""


class UniqueViolation(StoreError):
    pass


class ForeignKeyViolation(StoreError):
    pass


_SQLITE_UNIQUE = {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}
_SQLITE_FOREIGN_KEY = {"SQLITE_CONSTRAINT_FOREIGNKEY", "SQLITE_CONSTRAINT_TRIGGER"}
_SQLSTATE_UNIQUE = "23505"
_SQLSTATE_FOREIGN_KEY = "23503"


def classify_integrity_error(exc: IntegrityError) -> StoreError:
    """Map a driver integrity error onto a store error using its error code."""
    orig = exc.orig
    sqlite_code = getattr(orig, "sqlite_errorname", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)

    if sqlite_code in _SQLITE_UNIQUE or sqlstate == _SQLSTATE_UNIQUE:
        return UniqueViolation(str(orig))
    if sqlite_code in _SQLITE_FOREIGN_KEY or sqlstate == _SQLSTATE_FOREIGN_KEY:
        return ForeignKeyViolation(str(orig))
    return StoreError(str(orig))


@contextmanager
def store_errors(db: Session):
    """Roll back and re-raise integrity failures as typed store errors."""
    try:
        yield
    except IntegrityError as e:
        db.rollback()
        raise classify_integrity_error(e) from e


# =============================================================================
# Database handle
# =============================================================================

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, url: str):
        self.url = url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self):
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self):
        self.engine.dispose()
        logger.info("Database connection closed")


def get_db(request: Request):
    """Dependency for getting database sessions."""
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
