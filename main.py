import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers import auth, users

# Import all models so SQLAlchemy can resolve relationships
import models  # noqa: F401
from core.database import Base, SessionLocal, engine

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware import RequestIDMiddleware, get_request_id, limiter

# Logging imports
from core.logging_config import setup_logging
from core.config import settings
from utils.logger import get_logger, log_request

from services.housekeeping import TokenHousekeeper
from utils.deps import build_session_manager

setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    housekeeper = None
    if settings.HOUSEKEEPING_INTERVAL_SECONDS > 0 and settings.ENV != "testing":
        housekeeper = TokenHousekeeper(
            session_factory=SessionLocal,
            manager_factory=build_session_manager,
            interval_seconds=settings.HOUSEKEEPING_INTERVAL_SECONDS
        )
        housekeeper.start()

    logger.info("Application startup complete", extra={"event": "startup"})
    yield

    if housekeeper is not None:
        housekeeper.stop()
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Session Token Service",
    description="Access/refresh token issuance with rotation and reuse detection",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every HTTP request with method, path, status code, and duration.
    """
    start_time = time.time()

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000
    client_ip = request.client.host if request.client else "unknown"

    log_request(logger, request.method, request.url.path, response.status_code,
                duration, client_ip=client_ip)

    return response


# Added last so it wraps the logging middleware and the id is set while it logs
app.add_middleware(RequestIDMiddleware)


@app.get("/health")
async def health_check():
    logger.debug("Health check requested")
    return {"status": "Healthy"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Log unhandled exceptions with full context and return a generic 500.
    """
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise exc

    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": get_request_id(request)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


app.include_router(auth.router)
app.include_router(users.router)


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
