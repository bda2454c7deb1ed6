"""
History analyzer - answers "what do you know about me" / "what did we talk
about" style questions from recent conversation turns.

The message is matched against the patterns before any history is loaded,
so ordinary messages cost nothing.
"""

import logging
import re
from typing import List

from agentchat.services.chat_history import ChatHistoryStore, ConversationTurn

logger = logging.getLogger(__name__)

PERSONAL_RE = re.compile(
    r"describe me|tell me about me|what do you know about me|my history|our conversation"
    r"|what did we talk about|remember when|who am i",
    re.IGNORECASE,
)
CONVERSATIONAL_RE = re.compile(
    r"our chat|previous conversation|what we discussed|earlier|before|last time|history of our",
    re.IGNORECASE,
)
INTEREST_RE = re.compile(r"(?:i like|i love|i enjoy)\s+([^.!?]+)")
TOPIC_RE = re.compile(r"(?:about|regarding)\s+([^.!?]+)")

RECENT_TURNS = 6
PREVIEW_CHARS = 100


def _unique(items: List[str]) -> List[str]:
    seen = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


class HistoryAnalyzer:
    def __init__(self, history: ChatHistoryStore):
        self.history = history

    async def analyze(self, message: str, user_id: str, agent_id: str, window_size: int = 20) -> str:
        if not user_id or not agent_id or not message:
            return ""

        personal = bool(PERSONAL_RE.search(message))
        conversational = bool(CONVERSATIONAL_RE.search(message))
        if not personal and not conversational:
            return ""

        try:
            turns = await self.history.latest_turns(user_id, agent_id, window_size)
        except Exception as e:
            logger.error(f"Error loading chat history for analysis: {e}")
            return ""
        if not turns:
            return ""

        context = ""
        if personal:
            context += self._describe_user(turns)
        if conversational:
            context += self._recent_context(turns)
        return context

    @staticmethod
    def _describe_user(turns: List[ConversationTurn]) -> str:
        interests: List[str] = []
        topics: List[str] = []
        for turn in turns:
            if not turn.is_user:
                continue
            text = turn.content.lower()
            match = INTEREST_RE.search(text)
            if match:
                interests.append(match.group(1).strip())
            match = TOPIC_RE.search(text)
            if match:
                topics.append(match.group(1).strip())

        lines = "Based on our conversation history:\n"
        if interests:
            lines += f"You've mentioned interest in: {', '.join(_unique(interests))}\n"
        if topics:
            lines += f"Topics we've discussed: {', '.join(_unique(topics))}\n"
        lines += f"We've exchanged {len(turns)} messages recently.\n"
        return lines

    @staticmethod
    def _recent_context(turns: List[ConversationTurn]) -> str:
        lines = "Recent conversation context:\n"
        for turn in turns[-RECENT_TURNS:]:
            sender = "You" if turn.is_user else "I"
            text = turn.content
            preview = text[:PREVIEW_CHARS] + "..." if len(text) > PREVIEW_CHARS else text
            lines += f"{sender}: {preview}\n"
        return lines
