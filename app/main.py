import asyncio
import logging
import random
import time
import uuid
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
from .config import settings
from .database import create_tables
from .exceptions import ApiError, ErrorCode
from .routers.health import router as health_router
from .routers.auth import router as auth_router
from .routers.age_verify import router as age_verify_router
from .routers.digilocker import router as digilocker_router
from .routers.video_selfie import router as video_selfie_router
from .routers.consent import router as consent_router
from .routers.profile import router as profile_router
from .routers.limits import router as limits_router
from .routers.location import router as location_router
from .services.cleanup_service import CleanupService

# Configure logging
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()

    cleanup_task = None
    if settings.location_cleanup_enabled:
        cleanup_task = asyncio.create_task(CleanupService.start_cleanup_scheduler())

    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup_task


app = FastAPI(
    title="Bandhan - Verified Matchmaking API",
    description="""
# Bandhan API Documentation

Bandhan is a matchmaking backend for India with tiered identity verification,
DPDP Act 2023 consent management and daily limits for free users.

## 🔐 Authentication

1. `POST /auth/phone-otp/send` with an Indian mobile number (`+91XXXXXXXXXX`)
2. `POST /auth/phone-otp/verify` with the 6-digit code

Include the access token in the Authorization header: `Authorization: Bearer <your_token>`.
Access tokens last 15 minutes; use `POST /auth/refresh` with the refresh token.

## ✅ Verification tiers

| Tier | Level | Evidence |
|---|---|---|
| Bronze | 1 | Phone OTP |
| Silver | 2 | DigiLocker (government ID) |
| Gold | 3 | Video selfie liveness |

Tiers are earned in order and never go down. Profile routes also require
age verification (18+) through `POST /auth/age-verify`.

## 🛡️ Consent (DPDP Act 2023)

Consent is tracked per purpose (`purposeMatching`, `purposeMarketing`,
`purposeAnalytics`, `purposeThirdParty`) with a full history. Location
tracking requires `purposeAnalytics`.

## ⏱️ Daily limits

Free users get 5 profile views, 10 chats and 20 likes per day, reset at
midnight IST. `POST /limits/{action}/consume` answers `429 DAILY_LIMIT_REACHED`
with an upsell payload once the limit is used up.

## Error Handling

Every error has the same shape:

```json
{"error": "CODE", "message": "...", "details": {}, "requiresAction": "..."}
```
""",
    version=settings.app_version,
    contact={
        "name": "Bandhan API Support",
        "email": "support@bandhan.ai",
    },
    lifespan=lifespan
)

# Include routers
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(age_verify_router)
app.include_router(digilocker_router)
app.include_router(video_selfie_router)
app.include_router(consent_router)
app.include_router(profile_router)
app.include_router(limits_router)
app.include_router(location_router)

# CORS for UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", [
                        "method", "route", "status"])
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5)
)

# Plain HTTPExceptions (unknown route, wrong method) mapped onto error codes
HTTP_STATUS_CODES = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code.value} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = ApiError(
        ErrorCode.VALIDATION_ERROR,
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=422, content=error.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INVALID_INPUT)
    message = exc.detail if isinstance(exc.detail, str) else code.default_message
    error = ApiError(code, message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=error.to_dict(),
                        headers=getattr(exc, "headers", None))


@app.middleware("http")
async def add_request_id_and_errors(request: Request, call_next):
    request_id = str(uuid.uuid4())
    # Lightweight JSON log (sample all in debug, sample a fraction in prod)
    if settings.debug or random.random() < settings.log_sample_rate:
        logging.info({
            "event": "request",
            "method": request.method,
            "path": request.url.path,
            "rid": request_id,
        })
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logging.exception(f"Unhandled error rid={request_id}")
        route = getattr(request.scope.get("route"), "path", request.url.path)
        REQUEST_COUNT.labels(method=request.method,
                             route=route, status=500).inc()
        body = ApiError(ErrorCode.INTERNAL_SERVER_ERROR).to_dict()
        return JSONResponse(status_code=500, content=body, headers={"X-Request-ID": request_id})

    REQUEST_LATENCY.observe(time.perf_counter() - start)
    route = getattr(request.scope.get("route"), "path", request.url.path)
    REQUEST_COUNT.labels(method=request.method,
                         route=route, status=response.status_code).inc()
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/metrics", include_in_schema=False)
async def metrics(request: Request):
    # In dev/debug mode, expose metrics without auth
    if not settings.debug:
        token = request.headers.get("X-Metrics-Token")
        if not settings.metrics_token or token != settings.metrics_token:
            error = ApiError(ErrorCode.UNAUTHORIZED, "Metrics token required",
                             status_code=403)
            return JSONResponse(status_code=403, content=error.to_dict())
    data = generate_latest()
    return PlainTextResponse(content=data, media_type=CONTENT_TYPE_LATEST)
