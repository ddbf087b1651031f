# Chat API dependencies
from chatty.dependencies.auth import (
    AuthenticatedUser,
    extract_ws_token,
    get_current_user,
    get_session,
    get_smart_replies,
    verify_websocket_token,
)

__all__ = [
    "AuthenticatedUser",
    "extract_ws_token",
    "get_current_user",
    "get_session",
    "get_smart_replies",
    "verify_websocket_token",
]
