"""
Main FastAPI application for the partner/ambassador referral API.
Serves applications, codes, redemptions, payouts, payee accounts, health and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes import codes, connect, health, payouts, referrers
from app.referral.errors import ReferralError
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger("app.http")

app = FastAPI(
    title="Referral Commerce API",
    description="Partner and ambassador codes, redemptions, revenue split and payouts",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    start = time.time()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 1),
        },
    )
    return response


# Error envelope: {"error": "..."}
@app.exception_handler(ReferralError)
async def referral_error_handler(request: Request, exc: ReferralError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(referrers.partners_router)
app.include_router(referrers.ambassadors_router)
app.include_router(referrers.router)
app.include_router(codes.router)
app.include_router(payouts.router)
app.include_router(connect.router)
app.include_router(metrics_router)
