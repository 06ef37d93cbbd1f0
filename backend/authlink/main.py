"""
Main entry point for the authlink API.

Defines the FastAPI application, registers the routers and maps token
lifecycle failures to generic server errors.  Tables are created on startup
for local development; production deployments should manage the schema
separately (see `init_db.py`).
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .database import Base, get_engine
from .errors import DeliveryFailure, TokenError
from .routers import auth, password_reset

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=get_engine())
    yield


app = FastAPI(title="authlink API", version="0.1.0", lifespan=lifespan)

app.include_router(auth.router, tags=["auth"])
app.include_router(password_reset.router, tags=["password-reset"])


@app.exception_handler(DeliveryFailure)
async def delivery_failure_handler(request: Request, exc: DeliveryFailure) -> JSONResponse:
    logger.error("Delivery failed for %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Could not send email, please try again"},
    )


@app.exception_handler(TokenError)
async def token_error_handler(request: Request, exc: TokenError) -> JSONResponse:
    logger.error("%s during %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal error, please try again"},
    )


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a simple status indicator."""
    return {"status": "ok"}
