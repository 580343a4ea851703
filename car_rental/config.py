import os
from pathlib import Path


PACKAGE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Service settings read from the environment.

    Keyword arguments override the environment, which is how the tests
    point an app at a throwaway database.
    """

    def __init__(self, **overrides):
        self.SERVICE_NAME = os.getenv("SERVICE_NAME", "car-rental-api")
        self.SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
        self.ENV = os.getenv("ENV", "development")
        self.DEBUG = _env_flag("DEBUG")
        self.PORT = int(os.getenv("PORT", "3001"))

        # Database
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./car_rental.db")

        # Tokens and passwords
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-car-rental-secret")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
        self.BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

        # Files
        self.UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
        self.STATIC_DIR = os.getenv("STATIC_DIR", str(PACKAGE_DIR / "frontend"))

        # Bootstrap data
        self.ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
        self.ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
        self.ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
        self.SEED_DEMO_DATA = _env_flag("SEED_DEMO_DATA")

        # Telemetry
        self.TELEMETRY_CONSOLE = _env_flag("TELEMETRY_CONSOLE")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown config option: {key}")
            setattr(self, key, value)
