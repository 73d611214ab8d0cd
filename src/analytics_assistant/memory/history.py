"""
Conversation history store.

The assistant only needs two operations from the store: read the most recent
messages of a conversation and append new ones. Both a SQLAlchemy-backed and
an in-memory implementation are provided.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..llm.base import LLMMessage
from ..models import Conversation, Message, MessageRole

logger = structlog.get_logger()


@dataclass
class HistoryMessage:
    """One stored message of a conversation."""

    role: str
    content: str
    agent: str | None = None
    previews: list[dict[str, Any]] = field(default_factory=list)

    def to_llm_message(self, label_agent: bool = False) -> LLMMessage:
        """Render for a model.

        Pending previews are appended so the model can repeat the exact
        arguments with confirmed=true when the user confirms.
        """
        content = self.content
        if self.role == "assistant":
            if label_agent and self.agent:
                content = f"[answered by {self.agent}]\n{content}"
            if self.previews:
                pending = "\n".join(
                    f"- {p['tool']}({json.dumps(p.get('arguments', {}), sort_keys=True)})"
                    for p in self.previews
                )
                content = f"{content}\n\n[Pending confirmation for:\n{pending}]"
        return LLMMessage(role="assistant" if self.role == "assistant" else "user", content=content)


class HistoryStore(Protocol):
    async def read(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        """Most recent ``limit`` messages, oldest first."""
        ...

    async def append(
        self,
        conversation_id: str,
        messages: list[HistoryMessage],
        **metadata: Any,
    ) -> None:
        ...


class InMemoryHistoryStore:
    """History kept in process memory. Used in tests and local runs."""

    def __init__(self):
        self._conversations: dict[str, list[HistoryMessage]] = {}

    async def read(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        if limit <= 0:
            return []
        return list(self._conversations.get(conversation_id, [])[-limit:])

    async def append(
        self,
        conversation_id: str,
        messages: list[HistoryMessage],
        **metadata: Any,
    ) -> None:
        self._conversations.setdefault(conversation_id, []).extend(messages)


class SqlHistoryStore:
    """History persisted with SQLAlchemy."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def read(self, conversation_id: str, limit: int) -> list[HistoryMessage]:
        if limit <= 0:
            return []

        async with self.session_maker() as db:
            result = await db.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.position.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())

        rows.reverse()
        return [
            HistoryMessage(
                role=row.role,
                content=row.content,
                agent=row.agent,
                previews=list((row.extra_data or {}).get("previews", [])),
            )
            for row in rows
        ]

    async def append(
        self,
        conversation_id: str,
        messages: list[HistoryMessage],
        **metadata: Any,
    ) -> None:
        if not messages:
            return

        async with self.session_maker() as db:
            conversation = await db.get(Conversation, conversation_id)
            if conversation is None:
                conversation = Conversation(
                    id=conversation_id,
                    tenant_id=metadata.get("tenant_id"),
                    website_id=metadata.get("website_id"),
                    user_id=metadata.get("user_id"),
                )
                db.add(conversation)
                await db.flush()
                logger.info("Created conversation", conversation_id=conversation_id)

            result = await db.execute(
                select(func.max(Message.position)).where(Message.conversation_id == conversation_id)
            )
            position = result.scalar() or 0

            for msg in messages:
                position += 1
                db.add(Message(
                    conversation_id=conversation_id,
                    position=position,
                    role=MessageRole(msg.role).value,
                    content=msg.content,
                    agent=msg.agent,
                    extra_data={"previews": msg.previews} if msg.previews else {},
                ))

            await db.commit()
