"""
LLM Service - OpenAI API wrapper for chat completions

Provides:
- Chat completion with a fixed sampling configuration
- Retries for transient connection errors
- Mapping of provider error codes to user-facing messages
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from openai import APIConnectionError, APIError, AsyncOpenAI

from agentchat.config import Settings
from agentchat.errors import LLMServiceError

logger = logging.getLogger(__name__)

GENERIC_FAILURE_REPLY = "I'm having trouble thinking right now. Could you ask me again?"

ERROR_MESSAGES = {
    "insufficient_quota": "OpenAI API quota exceeded. Please check your billing.",
    "invalid_api_key": "Invalid OpenAI API key. Please check your configuration.",
    "rate_limit_exceeded": "OpenAI API rate limit exceeded. Please try again later.",
}


@dataclass
class LLMResponse:
    """Response from LLM completion"""
    content: str
    model: str
    tokens_prompt: int
    tokens_completion: int
    tokens_total: int
    finish_reason: Optional[str]


class LLMService:
    """
    OpenAI chat completions for agent replies.

    Known provider failures (quota, bad key, rate limit) raise
    LLMServiceError with a message meant for the user. Anything else the
    provider does wrong yields GENERIC_FAILURE_REPLY as the reply text.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.api_key = settings.openai_api_key
        self.default_model = settings.chat_model
        self.default_temperature = settings.chat_temperature
        self.default_max_tokens = settings.chat_max_tokens
        self.timeout = settings.llm_timeout_seconds
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def _validate(self, messages: List[Dict[str, str]]):
        if not self.api_key and self._client is None:
            raise LLMServiceError("missing_api_key", "OPENAI_API_KEY environment variable is not set")
        if not messages or not isinstance(messages, list):
            raise LLMServiceError("invalid_messages", "Invalid messages format")
        for message in messages:
            if not isinstance(message, dict) or "role" not in message or "content" not in message:
                raise LLMServiceError("invalid_messages", "Invalid messages format")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to settings.chat_model)
            temperature: Temperature for sampling (0-2)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with content and token usage
        """
        self._validate(messages)
        model = model or self.default_model
        temperature = temperature if temperature is not None else self.default_temperature
        max_tokens = max_tokens or self.default_max_tokens

        max_retries = 3
        retry_delay = 1.0

        logger.info(f"🤖 Calling OpenAI with {len(messages)} messages")
        for attempt in range(max_retries):
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                if not response.choices:
                    logger.error("OpenAI returned no choices")
                    return self._fallback(model)

                choice = response.choices[0]
                usage = response.usage
                return LLMResponse(
                    content=choice.message.content or "",
                    model=response.model,
                    tokens_prompt=usage.prompt_tokens if usage else 0,
                    tokens_completion=usage.completion_tokens if usage else 0,
                    tokens_total=usage.total_tokens if usage else 0,
                    finish_reason=choice.finish_reason,
                )

            except APIConnectionError as e:
                if attempt < max_retries - 1:
                    wait_time = retry_delay * (2 ** attempt)
                    logger.warning(f"Connection error, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"❌ OpenAI connection failed: {e}")
                return self._fallback(model)

            except APIError as e:
                code = getattr(e, "code", None)
                logger.error(f"❌ OpenAI API error ({code}): {e}")
                if code in ERROR_MESSAGES:
                    raise LLMServiceError(code, ERROR_MESSAGES[code]) from e
                return self._fallback(model)

        return self._fallback(model)

    @staticmethod
    def _fallback(model: str) -> LLMResponse:
        return LLMResponse(
            content=GENERIC_FAILURE_REPLY,
            model=model,
            tokens_prompt=0,
            tokens_completion=0,
            tokens_total=0,
            finish_reason="error",
        )
