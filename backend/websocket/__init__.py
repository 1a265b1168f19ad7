"""
WebSocket package for real-time job progress
"""

from .connection_manager import ConnectionManager, WebSocketMessage

__all__ = ["ConnectionManager", "WebSocketMessage"]
