"""
Response hardening and request logging for the auth API.
"""
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import logging

from placement_auth.services.security import security_config, SecurityUtils

logger = logging.getLogger(__name__)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses. Auth responses carry credentials,
    so they are also marked uncacheable.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
            "Referrer-Policy": "no-referrer",
            "Cache-Control": "no-store",
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        if security_config.enable_security_headers:
            for header, value in self.security_headers.items():
                response.headers[header] = value

            # Remove server header to avoid version disclosure
            if "server" in response.headers:
                del response.headers["server"]

        return response

class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs error responses as security events. Request bodies are never logged,
    since they carry passwords, codes and tokens.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        if response.status_code >= 400:
            SecurityUtils.log_security_event(
                "http_error_response",
                {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time": round(process_time, 3),
                    "user_agent": request.headers.get("user-agent", "")
                },
                client_ip=SecurityUtils.get_client_ip(request)
            )

        response.headers["X-Process-Time"] = str(round(process_time, 3))
        return response
