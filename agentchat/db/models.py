"""
Database models for the AgentChat backend

- Agents (and the legacy personality table) with their access pricing
- Payment records: the single source of truth for paid-agent access
- Conversations/messages: normalized, append-only chat history with
  message text encrypted at rest
"""

import json
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, Numeric, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class AgentRole(str, Enum):
    FREE = "free"
    PAID = "paid"


class Currency(str, Enum):
    USD = "USD"
    LBP = "LBP"
    AED = "AED"


class PaymentStatus(str, Enum):
    """Payment lifecycle: pending -> success | failed, success -> refunded"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Agent(Base):
    """A configured persona a user can talk to. May be free or paid."""
    __tablename__ = "agents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_uuid: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid.uuid4()))

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    personality_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trait_array: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Access pricing
    role: Mapped[str] = mapped_column(String(10), default=AgentRole.FREE.value)
    price_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_currency: Mapped[str] = mapped_column(String(3), default=Currency.USD.value)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Personality(Base):
    """Legacy persona table, addressed by its ``asid`` string."""
    __tablename__ = "personalities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asid: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    trait_array: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    role: Mapped[str] = mapped_column(String(10), default=AgentRole.FREE.value)
    price_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    price_currency: Mapped[str] = mapped_column(String(3), default=Currency.USD.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PaymentRecord(Base):
    """
    A payment intent for one (user, agent) pair.

    ``external_id`` is the provider-facing correlation id. It is the string
    form of the primary key, so it is always integer-representable.
    ``version`` is bumped on every status write and used as the
    compare-and-set guard for concurrent webhook deliveries.
    Records are never deleted.
    """
    __tablename__ = "payment_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)

    user_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default=Currency.USD.value)
    collect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, index=True)
    payer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_payment_records_user_agent_status", "user_id", "agent_id", "status"),
    )

    @property
    def metadata_dict(self) -> Dict[str, Any]:
        if not self.metadata_json:
            return {}
        try:
            return json.loads(self.metadata_json)
        except json.JSONDecodeError:
            return {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "externalId": self.external_id,
            "userId": self.user_id,
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "collectUrl": self.collect_url,
            "status": self.status,
            "payerPhone": self.payer_phone,
            "metadata": self.metadata_dict,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }


class Conversation(Base):
    """One conversation thread per (user, agent) pair."""
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), default="Chat Session")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages: Mapped[List["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "agent_id", name="uq_conversations_user_agent"),
    )


class Message(Base):
    """A single turn. ``content`` holds ``ivhex:cipherhex`` ciphertext."""
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id"), index=True)
    role: Mapped[str] = mapped_column(String(20))  # "user" | "assistant"
    content: Mapped[str] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String(20), default="text")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")
