"""
Security middleware for request filtering
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from chatty.logging_config import log_rate_limited
from chatty.middleware.rate_limit import rate_limiter


def get_client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Middleware that runs before route handlers
    - Applies per-client rate limiting
    - Adds security headers
    """

    # Paths that skip rate limiting
    BYPASS_PATHS = {"/health", "/health/store", "/health/ready"}

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path not in self.BYPASS_PATHS:
            client_ip = get_client_ip(request)
            if not rate_limiter.is_allowed(client_ip):
                log_rate_limited(client_ip)
                return self._add_security_headers(JSONResponse(
                    status_code=429,
                    content={"error": "rate_limited", "message": "Too many requests"}
                ))

        response = await call_next(request)
        return self._add_security_headers(response)

    def _add_security_headers(self, response: Response) -> Response:
        """Add security headers to response"""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response
