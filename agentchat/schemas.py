"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts both camelCase (wire) and snake_case field names."""
    model_config = ConfigDict(populate_by_name=True)


# ============== Chat ==============

class ChatHistoryItem(CamelModel):
    role: Optional[str] = Field(None, pattern="^(user|assistant|system)$")
    content: str
    is_user: Optional[bool] = Field(None, alias="isUser")


class ChatRequest(CamelModel):
    agent_id: Optional[str] = Field(None, alias="agentId")
    message: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    conversation_history: List[ChatHistoryItem] = Field(default_factory=list, alias="conversationHistory")

    def history_dicts(self) -> List[Dict[str, Any]]:
        return [
            {"role": item.role, "content": item.content, "isUser": item.is_user}
            for item in self.conversation_history
        ]


# ============== Payments ==============

class PaymentCreateRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userId")
    success_redirect_url: Optional[str] = Field(None, alias="successRedirectUrl")
    failure_redirect_url: Optional[str] = Field(None, alias="failureRedirectUrl")


class PaymentVerifyRequest(CamelModel):
    payment_id: Optional[Any] = Field(None, alias="paymentId")


# ============== Training ==============

class TrainingSearchRequest(CamelModel):
    agent_id: Optional[str] = Field(None, alias="agentId")
    query: Optional[str] = None
    limit: int = Field(10, ge=1, le=100)
    threshold: float = Field(0.7, ge=0, le=1)
    document_types: Optional[List[str]] = Field(None, alias="documentTypes")


# ============== Envelopes ==============

class SuccessEnvelope(BaseModel):
    success: bool = True
    data: Any = None
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
