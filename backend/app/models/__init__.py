from app.models.base import Base, TimestampMixin
from app.models.chat import (
    DEFAULT_CHAT_TITLE,
    Chat,
    Message,
    MessageRewrite,
    MessageSource,
    MessageVisualization,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Chat models
    "Chat",
    "Message",
    "MessageRewrite",
    "MessageSource",
    "MessageVisualization",
    # Constants
    "DEFAULT_CHAT_TITLE",
]
