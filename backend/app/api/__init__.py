"""API Routes for Veston."""

from app.api import auth, chat, chats, health, phi, proxy, visuals

__all__ = [
    "auth",
    "chat",
    "chats",
    "health",
    "phi",
    "proxy",
    "visuals",
]
