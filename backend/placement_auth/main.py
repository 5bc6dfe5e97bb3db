from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import asyncio
import logging

from placement_auth.api import auth
from placement_auth.middleware.security import SecurityHeadersMiddleware, SecurityLoggingMiddleware
from placement_auth.services.db import SessionLocal
from placement_auth.services.maintenance import maintenance_loop
from placement_auth.services.notifier import get_email_dispatcher
from placement_auth.services.rate_limiter import get_rate_limiter
from placement_auth.services.security import SecurityUtils, security_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the maintenance task; flush pending emails on shutdown."""
    maintenance_task = asyncio.create_task(maintenance_loop(SessionLocal, get_rate_limiter(), config=security_config))

    logger.info("Starting placement auth service")
    logger.info(f"  - Email backend: {security_config.email_backend}")
    logger.info(f"  - Email verification required: {security_config.require_email_verification}")
    logger.info(f"  - Refresh token rotation: {security_config.rotate_refresh_tokens}")
    logger.info(f"  - JWT algorithm: {security_config.jwt_algorithm}")

    yield

    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        logger.info("Maintenance task stopped")

    await get_email_dispatcher().drain(timeout=10)
    logger.info("Placement auth service shutdown complete")

app = FastAPI(
    title="Placement Portal Auth API",
    description="OTP-gated registration, login, sessions and password reset",
    version="1.0.0",
    lifespan=lifespan
)

# Last added is executed first
app.add_middleware(SecurityLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {"status": "healthy", "version": "1.0.0"}

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Shape errors from request parsing. Input values are not echoed back."""
    SecurityUtils.log_security_event(
        "request_validation_error",
        {
            "path": request.url.path,
            "method": request.method,
            "fields": [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        },
        client_ip=SecurityUtils.get_client_ip(request)
    )
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request format", "details": "Please check your request data"}
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(500)
async def internal_server_error_handler(request: Request, exc: Exception):
    SecurityUtils.log_security_event(
        "internal_server_error",
        {
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        },
        client_ip=SecurityUtils.get_client_ip(request)
    )
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
