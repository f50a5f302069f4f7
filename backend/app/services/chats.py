"""Chat repository implementations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    DEFAULT_CHAT_TITLE,
    Chat,
    Message,
    MessageRewrite,
    MessageSource,
    MessageVisualization,
)

PREVIEW_LENGTH = 80


def build_preview(content: str | None) -> str | None:
    """Short snippet of a message for chat lists and search."""
    if not content:
        return None
    text = str(content)
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


def to_history(messages: list[Any]) -> list[dict[str, str]]:
    """Convert stored messages to the role/content shape sent to LLMs and webhooks."""
    return [{"role": msg.role, "content": msg.content} for msg in messages]


class ChatRepository(Protocol):
    async def create_chat(
        self, user_email: str, user_id: Optional[str] = None, title: Optional[str] = None
    ):
        ...

    async def list_chats(self, user_email: str) -> list:
        ...

    async def get_chat(self, chat_id: uuid.UUID, user_email: str):
        ...

    async def rename_chat(self, chat_id: uuid.UUID, user_email: str, title: str) -> bool:
        ...

    async def delete_chat(self, chat_id: uuid.UUID, user_email: str) -> bool:
        ...

    async def touch_chat(self, chat_id: uuid.UUID) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def latest_previews(self, chat_ids: list[uuid.UUID], user_email: str) -> dict:
        ...

    async def add_message(
        self, chat_id: uuid.UUID, user_email: str, role: str, content: str
    ):
        ...

    async def get_message(self, message_id: uuid.UUID, chat_id: uuid.UUID, user_email: str):
        ...

    async def list_messages(self, chat_id: uuid.UUID, user_email: str) -> list:
        ...

    async def recent_history(self, chat_id: uuid.UUID, user_email: str, limit: int) -> list:
        ...

    async def add_rewrite(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        original_question: str,
        rewritten_question: str,
        applied: bool,
        rationale: Optional[str],
    ):
        ...

    async def add_sources(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        sources: list[dict[str, Any]],
    ) -> int:
        ...

    async def sources_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict:
        ...

    async def upsert_visualizations(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        visualizations: Any,
    ) -> None:
        ...

    async def visualizations_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict:
        ...

    async def search_messages(self, user_email: str, query: str, limit: int) -> list:
        ...


class SQLChatRepository:
    """Chat repository backed by SQLAlchemy."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self) -> None:
        """Make writes so far durable regardless of later steps in the request."""
        await self.db.commit()

    async def create_chat(
        self, user_email: str, user_id: Optional[str] = None, title: Optional[str] = None
    ) -> Chat:
        chat = Chat(user_id=user_id, user_email=user_email, title=title or DEFAULT_CHAT_TITLE)
        self.db.add(chat)
        await self.db.flush()
        await self.db.refresh(chat)
        return chat

    async def list_chats(self, user_email: str) -> list[Chat]:
        result = await self.db.execute(
            select(Chat)
            .where(Chat.user_email == user_email)
            .order_by(Chat.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_chat(self, chat_id: uuid.UUID, user_email: str) -> Optional[Chat]:
        result = await self.db.execute(
            select(Chat).where(Chat.id == chat_id, Chat.user_email == user_email)
        )
        return result.scalar_one_or_none()

    async def rename_chat(self, chat_id: uuid.UUID, user_email: str, title: str) -> bool:
        chat = await self.get_chat(chat_id, user_email)
        if not chat:
            return False
        async with self.db.begin_nested():
            chat.title = title
            chat.updated_at = datetime.now(timezone.utc)
        return True

    async def delete_chat(self, chat_id: uuid.UUID, user_email: str) -> bool:
        chat = await self.get_chat(chat_id, user_email)
        if not chat:
            return False
        for model in (MessageVisualization, MessageSource, MessageRewrite, Message):
            await self.db.execute(delete(model).where(model.chat_id == chat_id))
        await self.db.delete(chat)
        await self.db.flush()
        return True

    async def touch_chat(self, chat_id: uuid.UUID) -> None:
        result = await self.db.execute(select(Chat).where(Chat.id == chat_id))
        chat = result.scalar_one_or_none()
        if chat:
            chat.updated_at = datetime.now(timezone.utc)
            await self.db.flush()

    async def latest_previews(
        self, chat_ids: list[uuid.UUID], user_email: str
    ) -> dict[uuid.UUID, str]:
        if not chat_ids:
            return {}
        latest = (
            select(Message.chat_id, func.max(Message.created_at).label("latest_at"))
            .where(Message.chat_id.in_(chat_ids), Message.user_email == user_email)
            .group_by(Message.chat_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Message.chat_id, Message.content).join(
                latest,
                (Message.chat_id == latest.c.chat_id)
                & (Message.created_at == latest.c.latest_at),
            )
        )
        return {chat_id: build_preview(content) for chat_id, content in result.all()}

    async def add_message(
        self, chat_id: uuid.UUID, user_email: str, role: str, content: str
    ) -> Message:
        message = Message(chat_id=chat_id, user_email=user_email, role=role, content=content)
        async with self.db.begin_nested():
            self.db.add(message)
        await self.db.refresh(message)
        return message

    async def get_message(
        self, message_id: uuid.UUID, chat_id: uuid.UUID, user_email: str
    ) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).where(
                Message.id == message_id,
                Message.chat_id == chat_id,
                Message.user_email == user_email,
            )
        )
        return result.scalar_one_or_none()

    async def list_messages(self, chat_id: uuid.UUID, user_email: str) -> list[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.chat_id == chat_id, Message.user_email == user_email)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

    async def recent_history(
        self, chat_id: uuid.UUID, user_email: str, limit: int
    ) -> list[Message]:
        if limit <= 0:
            return []
        result = await self.db.execute(
            select(Message)
            .where(Message.chat_id == chat_id, Message.user_email == user_email)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def add_rewrite(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        original_question: str,
        rewritten_question: str,
        applied: bool,
        rationale: Optional[str],
    ) -> MessageRewrite:
        row = MessageRewrite(
            message_id=message_id,
            chat_id=chat_id,
            user_email=user_email,
            original_question=original_question,
            rewritten_question=rewritten_question,
            applied=applied,
            rationale=rationale,
        )
        async with self.db.begin_nested():
            self.db.add(row)
        return row

    async def add_sources(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        sources: list[dict[str, Any]],
    ) -> int:
        rows = [
            MessageSource(
                message_id=message_id,
                chat_id=chat_id,
                user_email=user_email,
                url=source["url"],
                title=source.get("title"),
                snippet=source.get("snippet"),
                score=source.get("score"),
            )
            for source in sources
        ]
        async with self.db.begin_nested():
            self.db.add_all(rows)
        return len(rows)

    async def sources_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict[uuid.UUID, list[MessageSource]]:
        if not message_ids:
            return {}
        result = await self.db.execute(
            select(MessageSource)
            .where(
                MessageSource.message_id.in_(message_ids),
                MessageSource.chat_id == chat_id,
                MessageSource.user_email == user_email,
            )
            .order_by(MessageSource.created_at.asc())
        )
        grouped: dict[uuid.UUID, list[MessageSource]] = {}
        for row in result.scalars().all():
            grouped.setdefault(row.message_id, []).append(row)
        return grouped

    async def upsert_visualizations(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        visualizations: Any,
    ) -> None:
        result = await self.db.execute(
            select(MessageVisualization).where(
                MessageVisualization.message_id == message_id,
                MessageVisualization.chat_id == chat_id,
                MessageVisualization.user_email == user_email,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            self.db.add(
                MessageVisualization(
                    message_id=message_id,
                    chat_id=chat_id,
                    user_email=user_email,
                    visualizations=visualizations,
                )
            )
        else:
            row.visualizations = visualizations
        await self.db.flush()

    async def visualizations_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict[uuid.UUID, Any]:
        if not message_ids:
            return {}
        result = await self.db.execute(
            select(MessageVisualization).where(
                MessageVisualization.message_id.in_(message_ids),
                MessageVisualization.chat_id == chat_id,
                MessageVisualization.user_email == user_email,
            )
        )
        return {row.message_id: row.visualizations for row in result.scalars().all()}

    async def search_messages(self, user_email: str, query: str, limit: int) -> list[Message]:
        result = await self.db.execute(
            select(Message)
            .where(
                Message.user_email == user_email,
                Message.content.icontains(query, autoescape=True),
            )
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


@dataclass
class InMemoryChat:
    id: uuid.UUID
    user_id: Optional[str]
    user_email: str
    title: str
    created_at: datetime
    updated_at: datetime


@dataclass
class InMemoryMessage:
    id: uuid.UUID
    chat_id: uuid.UUID
    user_email: str
    role: str
    content: str
    created_at: datetime
    updated_at: datetime


@dataclass
class InMemorySource:
    message_id: uuid.UUID
    chat_id: uuid.UUID
    user_email: str
    url: str
    title: Optional[str] = None
    snippet: Optional[str] = None
    score: Optional[float] = None


@dataclass
class InMemoryRewrite:
    message_id: uuid.UUID
    chat_id: uuid.UUID
    user_email: str
    original_question: str
    rewritten_question: str
    applied: bool
    rationale: Optional[str] = None


@dataclass
class InMemoryChatStore:
    chats: dict[uuid.UUID, InMemoryChat] = field(default_factory=dict)
    messages: list[InMemoryMessage] = field(default_factory=list)
    sources: list[InMemorySource] = field(default_factory=list)
    rewrites: list[InMemoryRewrite] = field(default_factory=list)
    visualizations: dict[tuple[uuid.UUID, uuid.UUID, str], Any] = field(default_factory=dict)


class InMemoryChatRepository:
    """In-memory repository for tests and local demos."""

    def __init__(self, store: InMemoryChatStore | None = None):
        self.store = store or InMemoryChatStore()
        self._tick = 0

    async def commit(self) -> None:
        return None

    def _now(self) -> datetime:
        # Strictly increasing timestamps keep ordering stable within one test.
        self._tick += 1
        return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(microseconds=self._tick)

    async def create_chat(
        self, user_email: str, user_id: Optional[str] = None, title: Optional[str] = None
    ) -> InMemoryChat:
        now = self._now()
        chat = InMemoryChat(
            id=uuid.uuid4(),
            user_id=user_id,
            user_email=user_email,
            title=title or DEFAULT_CHAT_TITLE,
            created_at=now,
            updated_at=now,
        )
        self.store.chats[chat.id] = chat
        return chat

    async def list_chats(self, user_email: str) -> list[InMemoryChat]:
        chats = [c for c in self.store.chats.values() if c.user_email == user_email]
        return sorted(chats, key=lambda c: c.updated_at, reverse=True)

    async def get_chat(self, chat_id: uuid.UUID, user_email: str) -> Optional[InMemoryChat]:
        chat = self.store.chats.get(chat_id)
        if chat is None or chat.user_email != user_email:
            return None
        return chat

    async def rename_chat(self, chat_id: uuid.UUID, user_email: str, title: str) -> bool:
        chat = await self.get_chat(chat_id, user_email)
        if not chat:
            return False
        chat.title = title
        chat.updated_at = self._now()
        return True

    async def delete_chat(self, chat_id: uuid.UUID, user_email: str) -> bool:
        chat = await self.get_chat(chat_id, user_email)
        if not chat:
            return False
        del self.store.chats[chat_id]
        self.store.messages = [m for m in self.store.messages if m.chat_id != chat_id]
        self.store.sources = [s for s in self.store.sources if s.chat_id != chat_id]
        self.store.rewrites = [r for r in self.store.rewrites if r.chat_id != chat_id]
        self.store.visualizations = {
            key: value for key, value in self.store.visualizations.items() if key[1] != chat_id
        }
        return True

    async def touch_chat(self, chat_id: uuid.UUID) -> None:
        chat = self.store.chats.get(chat_id)
        if chat:
            chat.updated_at = self._now()

    async def latest_previews(
        self, chat_ids: list[uuid.UUID], user_email: str
    ) -> dict[uuid.UUID, str]:
        previews: dict[uuid.UUID, str] = {}
        for message in self.store.messages:
            if message.chat_id in chat_ids and message.user_email == user_email:
                previews[message.chat_id] = build_preview(message.content)
        return previews

    async def add_message(
        self, chat_id: uuid.UUID, user_email: str, role: str, content: str
    ) -> InMemoryMessage:
        if chat_id not in self.store.chats:
            raise ValueError(f"Chat {chat_id} not found")
        now = self._now()
        message = InMemoryMessage(
            id=uuid.uuid4(),
            chat_id=chat_id,
            user_email=user_email,
            role=role,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.store.messages.append(message)
        return message

    async def get_message(
        self, message_id: uuid.UUID, chat_id: uuid.UUID, user_email: str
    ) -> Optional[InMemoryMessage]:
        for message in self.store.messages:
            if (
                message.id == message_id
                and message.chat_id == chat_id
                and message.user_email == user_email
            ):
                return message
        return None

    async def list_messages(
        self, chat_id: uuid.UUID, user_email: str
    ) -> list[InMemoryMessage]:
        return [
            m for m in self.store.messages
            if m.chat_id == chat_id and m.user_email == user_email
        ]

    async def recent_history(
        self, chat_id: uuid.UUID, user_email: str, limit: int
    ) -> list[InMemoryMessage]:
        if limit <= 0:
            return []
        return (await self.list_messages(chat_id, user_email))[-limit:]

    async def add_rewrite(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        original_question: str,
        rewritten_question: str,
        applied: bool,
        rationale: Optional[str],
    ) -> InMemoryRewrite:
        row = InMemoryRewrite(
            message_id=message_id,
            chat_id=chat_id,
            user_email=user_email,
            original_question=original_question,
            rewritten_question=rewritten_question,
            applied=applied,
            rationale=rationale,
        )
        self.store.rewrites.append(row)
        return row

    async def add_sources(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        sources: list[dict[str, Any]],
    ) -> int:
        for source in sources:
            self.store.sources.append(
                InMemorySource(
                    message_id=message_id,
                    chat_id=chat_id,
                    user_email=user_email,
                    url=source["url"],
                    title=source.get("title"),
                    snippet=source.get("snippet"),
                    score=source.get("score"),
                )
            )
        return len(sources)

    async def sources_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict[uuid.UUID, list[InMemorySource]]:
        grouped: dict[uuid.UUID, list[InMemorySource]] = {}
        for source in self.store.sources:
            if (
                source.message_id in message_ids
                and source.chat_id == chat_id
                and source.user_email == user_email
            ):
                grouped.setdefault(source.message_id, []).append(source)
        return grouped

    async def upsert_visualizations(
        self,
        message_id: uuid.UUID,
        chat_id: uuid.UUID,
        user_email: str,
        visualizations: Any,
    ) -> None:
        self.store.visualizations[(message_id, chat_id, user_email)] = visualizations

    async def visualizations_for_messages(
        self, message_ids: list[uuid.UUID], chat_id: uuid.UUID, user_email: str
    ) -> dict[uuid.UUID, Any]:
        return {
            message_id: value
            for (message_id, owner_chat_id, owner_email), value in self.store.visualizations.items()
            if message_id in message_ids
            and owner_chat_id == chat_id
            and owner_email == user_email
        }

    async def search_messages(
        self, user_email: str, query: str, limit: int
    ) -> list[InMemoryMessage]:
        needle = query.lower()
        hits = [
            m for m in self.store.messages
            if m.user_email == user_email and needle in m.content.lower()
        ]
        return sorted(hits, key=lambda m: m.created_at, reverse=True)[:limit]

    def clear(self) -> None:
        self.store = InMemoryChatStore()
        self._tick = 0
