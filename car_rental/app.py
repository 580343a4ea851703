"""
Car Rental API Service
======================
REST API and static pages for a car rental booking platform.

Features:
- Car inventory, user accounts and rental booking under /api
- SQLite (or any SQLAlchemy URL) for persistent storage
- Bearer-token authentication with admin and owner-or-admin access rules
- OpenTelemetry instrumentation for tracing and request metrics
- Health endpoints for container probes
- Structured logging
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import cars_router, rentals_router, users_router
from .cars import seed_demo_cars
from .config import Config
from .database import Database, get_db
from .errors import ApiError
from .schemas import HealthResponse, envelope
from .telemetry import metrics_middleware, setup_telemetry
from .users import ensure_admin

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='{"timestamp":"%(asctime)s","level":"%(levelname)s","service":"car-rental-api","logger":"%(name)s","message":"%(message)s"}'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifecycle
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database at startup and close it at shutdown."""
    config: Config = app.state.config
    logger.info(f"Starting {config.SERVICE_NAME} v{config.SERVICE_VERSION}")
    logger.info(f"Database: {config.DATABASE_URL}")

    Path(config.UPLOAD_DIR, "cars").mkdir(parents=True, exist_ok=True)

    db_handle = Database(config.DATABASE_URL)
    db_handle.create_all()
    app.state.db = db_handle

    db = db_handle.session()
    try:
        ensure_admin(db, config)
        if config.SEED_DEMO_DATA:
            seed_demo_cars(db)
    finally:
        db.close()

    yield

    db_handle.dispose()
    logger.info(f"Shutting down {config.SERVICE_NAME}")


# =============================================================================
# Error Handlers
# =============================================================================

def _pages_dir(config: Config) -> Path:
    return Path(config.STATIC_DIR) / "pages"


def _not_found_page(config: Config):
    page = _pages_dir(config) / "404.html"
    if page.is_file():
        return FileResponse(page, status_code=404, media_type="text/html")
    return HTMLResponse("<h1>404 - Page not found</h1>", status_code=404)


def register_error_handlers(app: FastAPI):
    config: Config = app.state.config

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(exc.message, success=False, error=exc.error),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=envelope("Invalid request data", success=False, error=detail),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if request.url.path.startswith("/api"):
            message = "API endpoint not found" if exc.status_code == 404 else str(exc.detail)
            return JSONResponse(status_code=exc.status_code, content=envelope(message, success=False))
        if exc.status_code == 404:
            return _not_found_page(config)
        return JSONResponse(status_code=exc.status_code, content=envelope(str(exc.detail), success=False))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception(f"Database error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=envelope("Database error", success=False,
                             error=str(exc) if config.DEBUG else "Internal server error"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content=envelope("Something went wrong!", success=False,
                             error=str(exc) if config.DEBUG else "Internal server error"),
        )


# =============================================================================
# Web Pages
# =============================================================================

def register_web_routes(app: FastAPI):
    config: Config = app.state.config
    pages_dir = _pages_dir(config).resolve()

    def send_page(name: str):
        page = (pages_dir / name).resolve()
        if page.parent != pages_dir or not page.is_file():
            return _not_found_page(config)
        return FileResponse(page, media_type="text/html")

    @app.get("/", include_in_schema=False)
    async def index():
        return send_page("index.html")

    @app.get("/pages/{page}", include_in_schema=False)
    async def page(page: str):
        return send_page(page if page.endswith(".html") else f"{page}.html")

    @app.get("/booking", include_in_schema=False)
    async def booking_form():
        return send_page("booking-form.html")

    @app.get("/admin", include_in_schema=False)
    async def admin_login():
        return send_page("admin-login.html")


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(config: Optional[Config] = None) -> FastAPI:
    config = config or Config()
    setup_telemetry(config)

    app = FastAPI(
        title="Car Rental API",
        description="Car rental booking platform: fleet, customers and rentals",
        version=config.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(metrics_middleware)

    register_error_handlers(app)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(db: Session = Depends(get_db)):
        """Health check endpoint for container probes."""
        db_status = "healthy"
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db_status = f"unhealthy: {str(e)}"

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            service=config.SERVICE_NAME,
            version=config.SERVICE_VERSION,
            timestamp=datetime.now(timezone.utc).isoformat(),
            checks={"database": db_status},
        )

    @app.get("/ready", tags=["Health"])
    async def readiness_check():
        return {"ready": True}

    @app.get("/live", tags=["Health"])
    async def liveness_check():
        return {"alive": True}

    app.include_router(cars_router)
    app.include_router(users_router)
    app.include_router(rentals_router)

    register_web_routes(app)
    app.mount("/static", StaticFiles(directory=Path(config.STATIC_DIR) / "static", check_dir=False), name="static")
    app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")

    FastAPIInstrumentor.instrument_app(app)
    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    config = Config()
    uvicorn.run(
        "car_rental.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=config.PORT,
        reload=config.ENV == "development",
        log_level="info",
    )


if __name__ == "__main__":
    main()
