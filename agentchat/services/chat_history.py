"""
Chat history store - append-only conversation turns per (user, agent) pair.

Message text is encrypted before it is written and decrypted on read. A row
that cannot be decrypted is returned with a placeholder instead of failing
the whole read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from agentchat.db.models import Conversation, Message, MessageRole
from agentchat.services.encryption import EncryptionError, EncryptionService

logger = logging.getLogger(__name__)

UNDECRYPTABLE_PLACEHOLDER = "[Message could not be decrypted]"


@dataclass
class ConversationTurn:
    id: str
    user_id: str
    agent_id: str
    role: str
    content: str
    timestamp: datetime
    message_type: str = "text"

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "agentId": self.agent_id,
            "role": self.role,
            "content": self.content,
            "messageType": self.message_type,
            "isUser": self.is_user,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class ChatHistoryStore:
    def __init__(self, session_maker, encryption: EncryptionService):
        self._session_maker = session_maker
        self.encryption = encryption
        self._last_timestamp: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        """utcnow, nudged forward so turns written by this process never tie."""
        now = datetime.utcnow()
        if self._last_timestamp and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _decrypt(self, value: str) -> str:
        if not self.encryption.is_encrypted(value):
            return value
        try:
            return self.encryption.decrypt(value)
        except EncryptionError as e:
            logger.error(f"Error decrypting message: {e}")
            return UNDECRYPTABLE_PLACEHOLDER

    def _to_turn(self, message: Message, conversation: Conversation) -> ConversationTurn:
        return ConversationTurn(
            id=message.id,
            user_id=conversation.user_id,
            agent_id=conversation.agent_id,
            role=message.role,
            content=self._decrypt(message.content),
            timestamp=message.created_at,
            message_type=message.message_type or "text",
        )

    async def _get_or_create_conversation(self, db, user_id: str, agent_id: str) -> Conversation:
        result = await db.execute(
            select(Conversation).where(Conversation.user_id == user_id, Conversation.agent_id == agent_id)
        )
        conversation = result.scalar_one_or_none()
        if conversation:
            return conversation

        conversation = Conversation(user_id=user_id, agent_id=agent_id, title="Chat Session")
        db.add(conversation)
        try:
            await db.flush()
        except IntegrityError:
            # Another request created it first
            await db.rollback()
            result = await db.execute(
                select(Conversation).where(Conversation.user_id == user_id, Conversation.agent_id == agent_id)
            )
            conversation = result.scalar_one()
        return conversation

    async def append_turn(
        self, user_id: str, agent_id: str, role: str, content: str, message_type: str = "text"
    ) -> ConversationTurn:
        if role not in (MessageRole.USER.value, MessageRole.ASSISTANT.value):
            raise ValueError(f"Unknown message role: {role}")

        async with self._session_maker() as db:
            conversation = await self._get_or_create_conversation(db, user_id, agent_id)
            message = Message(
                conversation_id=conversation.id,
                role=role,
                content=self.encryption.encrypt(content),
                message_type=message_type,
                created_at=self._next_timestamp(),
            )
            db.add(message)
            conversation.updated_at = message.created_at
            await db.commit()
            return ConversationTurn(
                id=message.id,
                user_id=user_id,
                agent_id=agent_id,
                role=role,
                content=content,
                timestamp=message.created_at,
                message_type=message_type,
            )

    async def append_exchange(self, user_id: str, agent_id: str, user_text: str, reply: str) -> List[ConversationTurn]:
        """
        Store a user turn and the reply in one transaction.

        Both texts are encrypted before anything is written, so a reply that
        cannot be stored leaves no orphaned user turn behind.
        """
        encrypted = [
            (MessageRole.USER.value, user_text, self.encryption.encrypt(user_text)),
            (MessageRole.ASSISTANT.value, reply, self.encryption.encrypt(reply)),
        ]
        async with self._session_maker() as db:
            conversation = await self._get_or_create_conversation(db, user_id, agent_id)
            messages = []
            for role, _, content in encrypted:
                message = Message(
                    conversation_id=conversation.id,
                    role=role,
                    content=content,
                    message_type="text",
                    created_at=self._next_timestamp(),
                )
                db.add(message)
                messages.append(message)
            conversation.updated_at = messages[-1].created_at
            await db.commit()
            return [
                ConversationTurn(
                    id=message.id,
                    user_id=user_id,
                    agent_id=agent_id,
                    role=role,
                    content=text,
                    timestamp=message.created_at,
                )
                for message, (role, text, _) in zip(messages, encrypted)
            ]

    def _pair_query(self, user_id: str, agent_id: str):
        return (
            select(Message, Conversation)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .where(Conversation.user_id == user_id, Conversation.agent_id == agent_id)
        )

    async def latest_turns(self, user_id: str, agent_id: str, count: int = 10) -> List[ConversationTurn]:
        """Most recent ``count`` turns, oldest first."""
        async with self._session_maker() as db:
            result = await db.execute(
                self._pair_query(user_id, agent_id)
                .order_by(Message.created_at.desc())
                .limit(count)
            )
            rows = result.all()
        return [self._to_turn(message, conversation) for message, conversation in reversed(rows)]

    async def history_page(
        self, user_id: str, agent_id: str, limit: int = 50, offset: int = 0
    ) -> Dict[str, Any]:
        """Newest-first page of turns."""
        async with self._session_maker() as db:
            result = await db.execute(
                self._pair_query(user_id, agent_id)
                .order_by(Message.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = result.all()
            total = await db.scalar(
                select(func.count(Message.id))
                .join(Conversation, Message.conversation_id == Conversation.id)
                .where(Conversation.user_id == user_id, Conversation.agent_id == agent_id)
            )

        messages = [self._to_turn(message, conversation).to_dict() for message, conversation in rows]
        return {
            "messages": messages,
            "totalCount": total or 0,
            "hasMore": offset + len(messages) < (total or 0),
        }

    async def user_history(self, user_id: str, limit: int = 100, offset: int = 0) -> List[ConversationTurn]:
        """A user's turns across every agent, newest first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Message, Conversation)
                .join(Conversation, Message.conversation_id == Conversation.id)
                .where(Conversation.user_id == user_id)
                .order_by(Message.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            rows = result.all()
        return [self._to_turn(message, conversation) for message, conversation in rows]

    async def delete_history(self, user_id: str, agent_id: str) -> int:
        """Remove every turn for the pair. Returns the number of messages deleted."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(Conversation.id).where(Conversation.user_id == user_id, Conversation.agent_id == agent_id)
            )
            conversation_ids = list(result.scalars().all())
            if not conversation_ids:
                return 0
            deleted = await db.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
            await db.execute(delete(Conversation).where(Conversation.id.in_(conversation_ids)))
            await db.commit()
            logger.info(f"🗑️ Deleted {deleted.rowcount} messages for user {user_id} / agent {agent_id}")
            return deleted.rowcount or 0
