# Chat core services
from chatty.services.websocket import ConnectionManager, ws_manager

__all__ = ["ConnectionManager", "ws_manager"]
