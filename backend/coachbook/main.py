import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from .config import settings
from .errors import BookingError
from .redis_client import redis_client
from .routers import availability, bookings, credits, internal

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Coaching Booking API")

app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(credits.router)
app.include_router(internal.router)


# ===== Error envelope =====

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} → {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request."
    return JSONResponse(
        status_code=422,
        content={"success": False, "code": "VALIDATION_ERROR", "error": message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "code": "INTERNAL_ERROR", "error": BookingError.message},
    )


@app.get("/health")
def health():
    try:
        return {"redis": redis_client.ping()}
    except RedisError as e:
        logger.error(f"Redis ping failed: {e}")
        return JSONResponse(status_code=503, content={"redis": False})
