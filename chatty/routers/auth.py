"""
Authentication endpoints
Email/password sign-up and sign-in with an httponly access-token cookie
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import jwt
from passlib.context import CryptContext

from chatty.config import settings
from chatty.database import get_store
from chatty.dependencies.auth import (
    AuthenticatedUser,
    decode_access_token,
    get_current_user,
    get_session_registry,
)
from chatty.errors import ChatError, ConflictError, to_http_exception
from chatty.logging_config import log_follow_up_failure, log_rate_limited
from chatty.middleware.rate_limit import auth_rate_limiter
from chatty.middleware.security import get_client_ip
from chatty.schemas.auth import AuthSuccess, LoginRequest, SignupRequest
from chatty.schemas.user import UserProfile
from chatty.services.websocket import ws_manager

router = APIRouter()

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def create_access_token(user_id: str, display_name: str, session_id: Optional[str] = None) -> tuple[str, int]:
    """Create an access token bound to a fresh (or given) session id"""
    expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta

    payload = {
        "sub": user_id,
        "name": display_name,
        "sid": session_id or uuid4().hex,
        "type": "access",
        "exp": expire,
        "iat": datetime.now(timezone.utc)
    }

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, int(expires_delta.total_seconds())


def check_auth_rate_limit(request: Request, email: str):
    """Per-IP and per-IP-and-account limit on sign-up / sign-in attempts"""
    client_ip = get_client_ip(request)
    if not auth_rate_limiter.is_allowed(client_ip) or not auth_rate_limiter.is_allowed(f"{client_ip}:{email}"):
        log_rate_limited(client_ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": "rate_limited", "message": "Too many attempts"}
        )


def set_auth_cookies(response: Response, access_token: str, access_expires: int):
    """Set authentication cookies"""
    # Set access_token for API endpoints
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/api",
        max_age=access_expires
    )

    # Set access_token for WebSocket connections (/ws path)
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/ws",
        max_age=access_expires
    )


def clear_auth_cookies(response: Response):
    """Clear authentication cookies"""
    response.delete_cookie(key="access_token", path="/api")
    response.delete_cookie(key="access_token", path="/ws")


@router.post("/auth/signup", response_model=AuthSuccess, status_code=status.HTTP_201_CREATED)
async def signup(
    request: Request,
    response: Response,
    signup_request: SignupRequest,
    store=Depends(get_store)
):
    """
    Create an account and its profile, then sign in

    Flow:
    1. Check rate limit and password length
    2. Hash password and create user (email must be unused)
    3. Create token and set cookies
    """
    check_auth_rate_limit(request, signup_request.email)

    if len(signup_request.password) < settings.PASSWORD_MIN_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "password_too_short", "message": f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters"}
        )

    password_hash = pwd_context.hash(signup_request.password)

    try:
        profile = await store.create_user(
            signup_request.email, signup_request.name, password_hash
        )
    except ConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "email_taken", "message": "This email is already in use."}
        )
    except ChatError as exc:
        raise to_http_exception(exc)

    access_token, access_expires = create_access_token(profile.id, profile.display_name)
    set_auth_cookies(response, access_token, access_expires)

    return AuthSuccess(user=profile, message="Registration successful")


@router.post("/auth/login", response_model=AuthSuccess)
async def login(
    request: Request,
    response: Response,
    login_request: LoginRequest,
    store=Depends(get_store)
):
    """
    Sign in an existing user

    Flow:
    1. Check rate limit
    2. Verify email/password
    3. Mark the user active
    4. Create token and set cookies
    """
    check_auth_rate_limit(request, login_request.email)

    try:
        credentials = await store.find_credentials(login_request.email)
    except ChatError as exc:
        raise to_http_exception(exc)

    if credentials is None or not pwd_context.verify(login_request.password, credentials[1]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_credentials", "message": "Invalid email or password"}
        )

    profile = credentials[0]

    try:
        await store.touch_user(profile.id)
    except ChatError as exc:
        log_follow_up_failure("liveness_update", profile.id, exc)

    access_token, access_expires = create_access_token(profile.id, profile.display_name)
    set_auth_cookies(response, access_token, access_expires)

    return AuthSuccess(user=profile, message="Login successful")


@router.post("/auth/logout")
async def logout(request: Request, response: Response):
    """
    Logout user - drop the session's drafts and caches, close its sockets
    and clear cookies
    """
    access_token = request.cookies.get("access_token")
    user = decode_access_token(access_token) if access_token else None

    if user is not None:
        get_session_registry(request).discard(user.session_id)
        await ws_manager.close_session(user.session_id, reason="Logged out")

    clear_auth_cookies(response)

    return {"message": "Logged out successfully"}


@router.get("/auth/me", response_model=UserProfile)
async def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store)
):
    """Current user's own profile"""
    try:
        return await store.get_profile(user.user_id)
    except ChatError as exc:
        raise to_http_exception(exc)
