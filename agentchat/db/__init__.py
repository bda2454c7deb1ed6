from agentchat.db.database import create_engine_for, create_session_maker, drop_db, init_db
from agentchat.db.models import (
    Agent, AgentRole, Base, Conversation, Currency, Message, MessageRole, PaymentRecord,
    PaymentStatus, Personality,
)

__all__ = [
    "Base", "Agent", "AgentRole", "Personality", "PaymentRecord", "PaymentStatus", "Currency",
    "Conversation", "Message", "MessageRole",
    "create_engine_for", "create_session_maker", "init_db", "drop_db",
]
