"""
Shared error types for the chat, payment and knowledge services.
"""

from typing import Optional


class AgentChatError(Exception):
    """Base class for errors raised by agentchat services."""


class ValidationError(AgentChatError, ValueError):
    """Bad input shape or range. Raised before any network or database call."""

    def __init__(self, message: str, field: str = "unknown"):
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(AgentChatError):
    def __init__(self, resource: str, identifier: object):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class ConfigurationError(AgentChatError):
    """Required configuration is missing."""


class PaymentGatewayError(AgentChatError):
    """The payment provider rejected the call or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidTransitionError(AgentChatError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move payment from '{current}' to '{target}'")
        self.current = current
        self.target = target


class LLMServiceError(AgentChatError):
    """A language-model failure with a user-facing explanation."""

    def __init__(self, code: str, user_message: str):
        super().__init__(user_message)
        self.code = code
        self.user_message = user_message
