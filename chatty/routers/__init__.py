# Chat API routers
from chatty.routers import health, auth, users, conversations, messages, search, websocket

__all__ = ["health", "auth", "users", "conversations", "messages", "search", "websocket"]
