from agentchat.api.agents import router as agents_router
from agentchat.api.chat import router as chat_router
from agentchat.api.history import router as history_router
from agentchat.api.payments import router as payments_router
from agentchat.api.training import router as training_router

__all__ = [
    "agents_router",
    "chat_router",
    "history_router",
    "payments_router",
    "training_router",
]
