import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from errors import (
    AuthRequiredError,
    NotFoundError,
    OperationInProgressError,
    PersistenceError,
    RoutineError,
    ValidationError,
)
from exercises_api import router as exercises_router
from routines_api import router as routines_router
from sessions_api import router as sessions_router

# Load environment variables from .env file
load_dotenv()


def setup_logger(level: str | None = None) -> None:
    """Replace loguru's default sink with a stderr sink at LOG_LEVEL."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        ),
        colorize=True,
    )


setup_logger()

app = FastAPI(title="PT Routines", version="1.0.0")

# Most specific first; OperationInProgressError is a PersistenceError
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (AuthRequiredError, 401),
    (OperationInProgressError, 409),
    (PersistenceError, 500),
)


def status_for(error: RoutineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(RoutineError)
async def handle_routine_error(request: Request, exc: RoutineError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "Routine error during request",
            method=request.method,
            url=str(request.url),
            error=str(exc),
        )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.middleware("http")
async def log_internal_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except HTTPException as e:
        if e.status_code == 500:
            logger.error(
                "Unhandled exception during request",
                method=request.method,
                url=str(request.url),
                error=e.detail,
            )
        raise


# Include routers
app.include_router(routines_router)
app.include_router(sessions_router)
app.include_router(exercises_router)


@app.get("/")
async def root():
    return {"message": "Welcome to PT Routines"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
