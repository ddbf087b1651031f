"""
Chatty backend - one-to-one chat over a live document store.
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatty.config import settings, validate_settings
from chatty.database import init_store, close_store
from chatty.routers import auth, conversations, health, messages, search, users, websocket
from chatty.middleware.security import SecurityMiddleware
from chatty.logging_config import setup_logging
from chatty.services.heartbeat import start_liveness_task
from chatty.services.session import SessionRegistry
from chatty.services.smart_reply import SmartReplyService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Setup logging
    setup_logging()

    # Validate deployment-critical settings before opening the store.
    validate_settings(settings)

    # Startup
    await init_store(settings)

    # Start background tasks
    liveness_task = start_liveness_task(sessions=app.state.sessions)

    yield

    # Shutdown
    liveness_task.cancel()
    await asyncio.gather(liveness_task, return_exceptions=True)
    app.state.sessions.clear()
    await close_store()


def create_app() -> FastAPI:
    """Application factory"""
    app = FastAPI(
        title="Chatty",
        description="One-to-one chat with live chat lists and smart replies",
        version="1.0.0",
        lifespan=lifespan
    )

    # Session-scoped drafts and caches, keyed by token session id
    app.state.sessions = SessionRegistry()
    app.state.smart_replies = SmartReplyService.from_settings(settings)

    # Rate limiting and security headers
    app.add_middleware(SecurityMiddleware)

    # CORS - restrictive
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type"],
    )

    # Register routers
    app.include_router(health.router, tags=["health"])
    app.include_router(auth.router, prefix="/api", tags=["auth"])
    app.include_router(users.router, prefix="/api", tags=["users"])
    app.include_router(conversations.router, prefix="/api", tags=["conversations"])
    app.include_router(messages.router, prefix="/api", tags=["messages"])
    app.include_router(search.router, prefix="/api", tags=["search"])
    app.include_router(websocket.router, tags=["websocket"])

    return app


app = create_app()
