import logging
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from .config import Config
from .database import UniqueViolation, UserDB, store_errors
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .schemas import User
from .security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6


def user_payload(user: UserDB) -> dict:
    """Public view of a user; the password hash never leaves this module."""
    return User.model_validate(user).model_dump(mode="json")


def _check_email(email: str) -> None:
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")


def find_by_email(db: Session, email: str) -> Optional[UserDB]:
    return db.query(UserDB).filter(UserDB.email == email).first()


def get_user(db: Session, user_id: int) -> UserDB:
    user = db.get(UserDB, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def list_users(db: Session) -> List[UserDB]:
    return db.query(UserDB).order_by(UserDB.created_at.desc(), UserDB.id.desc()).all()


def register_user(db: Session, data: dict, config: Config) -> UserDB:
    """Create a customer account."""
    if not all(data.get(name) for name in ("username", "email", "password", "full_name")):
        raise ValidationError("Required fields: username, email, password, full_name")
    _check_email(data["email"])
    if len(data["password"]) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if find_by_email(db, data["email"]):
        raise ConflictError("User with this email already exists")

    user = UserDB(
        username=data["username"],
        email=data["email"],
        password=hash_password(data["password"], config.BCRYPT_ROUNDS),
        full_name=data["full_name"],
        phone=data.get("phone"),
        license_number=data.get("license_number"),
        role="customer",
    )
    db.add(user)
    try:
        with store_errors(db):
            db.commit()
    except UniqueViolation:
        raise ConflictError("Username or email already exists")

    db.refresh(user)
    logger.info(f"User registered: {user.id} ({user.username})")
    return user


def login(db: Session, email: Optional[str], password: Optional[str], config: Config,
          admin_only: bool = False) -> dict:
    """Check credentials and issue a bearer token.

    The failure message is the same whether the email or the password was
    wrong. With ``admin_only`` a valid customer account is rejected too.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")

    failure = "Invalid admin credentials" if admin_only else "Invalid email or password"
    user = find_by_email(db, email)
    if not user or (admin_only and user.role != "admin"):
        raise AuthenticationError(failure)
    if not verify_password(password, user.password):
        logger.info(f"Failed login for user {user.id}")
        raise AuthenticationError(failure)

    logger.info(f"User {user.id} logged in (role={user.role})")
    return {"user": user_payload(user), "token": create_access_token(user, config)}


def update_user(db: Session, user_id: int, data: dict) -> UserDB:
    fields = {key: value for key, value in data.items() if value is not None and value.strip()}
    if not fields:
        raise ValidationError("No fields to update")
    if "email" in fields:
        _check_email(fields["email"])

    user = get_user(db, user_id)
    for key, value in fields.items():
        setattr(user, key, value)
    try:
        with store_errors(db):
            db.commit()
    except UniqueViolation:
        raise ConflictError("Username or email already exists")

    db.refresh(user)
    logger.info(f"User updated: {user.id} fields={sorted(fields)}")
    return user


def change_password(db: Session, user_id: int, current_password: Optional[str],
                    new_password: Optional[str], config: Config) -> None:
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")

    user = get_user(db, user_id)
    if not verify_password(current_password, user.password):
        raise AuthenticationError("Current password is incorrect")

    user.password = hash_password(new_password, config.BCRYPT_ROUNDS)
    db.commit()
    logger.info(f"Password changed for user {user.id}")


def ensure_admin(db: Session, config: Config) -> None:
    """Create the bootstrap admin account from ADMIN_EMAIL / ADMIN_PASSWORD."""
    if not config.ADMIN_EMAIL or not config.ADMIN_PASSWORD:
        return
    if find_by_email(db, config.ADMIN_EMAIL):
        logger.info(f"Admin account {config.ADMIN_EMAIL} already exists")
        return

    db.add(UserDB(
        username=config.ADMIN_USERNAME,
        email=config.ADMIN_EMAIL,
        password=hash_password(config.ADMIN_PASSWORD, config.BCRYPT_ROUNDS),
        full_name="Administrator",
        role="admin",
    ))
    db.commit()
    logger.info(f"Created admin account {config.ADMIN_EMAIL}")
