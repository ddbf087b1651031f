# HTTP middleware
from chatty.middleware.security import SecurityMiddleware, get_client_ip
from chatty.middleware.rate_limit import RateLimiter, rate_limiter, auth_rate_limiter

__all__ = ["SecurityMiddleware", "get_client_ip", "RateLimiter", "rate_limiter", "auth_rate_limiter"]
