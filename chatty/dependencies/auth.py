"""
Authentication dependencies for protected routes
Supports cookie-based authentication
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status, WebSocket
from jose import jwt, JWTError

from chatty.config import settings
from chatty.services.session import SessionRegistry, SessionStore
from chatty.services.smart_reply import SmartReplyService


class AuthenticatedUser:
    """Represents an authenticated user and the session the token belongs to"""

    def __init__(
        self,
        user_id: str,
        display_name: str,
        session_id: str,
        expires_at: Optional[datetime] = None,
    ):
        self.user_id = user_id
        self.display_name = display_name
        self.session_id = session_id
        self.expires_at = expires_at


def decode_access_token(token: str) -> Optional[AuthenticatedUser]:
    """Decode an access token, returning None when it is invalid"""
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )

        if payload.get("type") != "access":
            return None

        user_id = str(payload["sub"])
        display_name = payload["name"]
        session_id = str(payload["sid"])
        if not user_id or not session_id:
            return None

        exp = payload.get("exp")
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None

        return AuthenticatedUser(
            user_id=user_id,
            display_name=display_name,
            session_id=session_id,
            expires_at=expires_at,
        )

    except (JWTError, KeyError, ValueError, TypeError, OverflowError):
        return None


async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    Get current user from access_token cookie
    Used for REST API endpoints
    """
    access_token = request.cookies.get("access_token")

    if not access_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "not_authenticated", "message": "No access token"},
        )

    user = decode_access_token(access_token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_token", "message": "Invalid or expired token"},
        )
    return user


async def verify_websocket_token(token: str) -> Optional[AuthenticatedUser]:
    """
    Verify JWT token for WebSocket connections
    Returns AuthenticatedUser if valid, None if invalid
    """
    return decode_access_token(token)


def extract_ws_token(websocket: WebSocket) -> Optional[str]:
    """
    Extract token from WebSocket connection
    Cookie-only authentication for browser WebSocket clients.
    """
    return websocket.cookies.get("access_token")


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_session(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
) -> SessionStore:
    """Session-scoped state (drafts, caches) for the caller's token"""
    return get_session_registry(request).get(
        user.session_id, user.user_id, user.expires_at
    )


def get_smart_replies(request: Request) -> SmartReplyService:
    return request.app.state.smart_replies
