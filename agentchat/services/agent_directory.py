"""
Agent directory - resolves agent identifiers to personas and pricing.

Agents live in the ``agents`` table; older personas live in
``personalities`` and are addressed by their ``asid``. An incoming id is
classified once into an ``AgentRef`` and every lookup switches on its kind.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from agentchat.db.models import Agent, AgentRole, Personality
from agentchat.errors import ValidationError

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class AgentRefKind(str, Enum):
    AGENT_UUID = "agent_uuid"
    AGENT_ID = "agent_id"
    LEGACY_ASID = "legacy_asid"


@dataclass(frozen=True)
class AgentRef:
    """An agent identifier tagged with the column it addresses."""
    kind: AgentRefKind
    raw: str

    @classmethod
    def parse(cls, raw: Any) -> "AgentRef":
        if raw is None:
            raise ValidationError("agentId is required", field="agentId")
        value = str(raw).strip()
        if not value:
            raise ValidationError("agentId is required", field="agentId")
        if _UUID_RE.match(value):
            return cls(AgentRefKind.AGENT_UUID, value)
        if value.isdigit():
            return cls(AgentRefKind.AGENT_ID, value)
        return cls(AgentRefKind.LEGACY_ASID, value)

    def __str__(self) -> str:
        return self.raw


@dataclass
class AgentPricing:
    role: str
    price_amount: Optional[Decimal]
    price_currency: str
    name: Optional[str]

    @property
    def is_paid(self) -> bool:
        return self.role == AgentRole.PAID.value and bool(self.price_amount)


@dataclass
class AgentProfile:
    """Persona data used to build prompts, from either table.

    ``agent_id`` is the canonical key for the agent: the integer id as a
    string for agents, the asid for legacy personalities. Payments and chat
    history are stored under it whichever form the caller used.
    """
    id: int
    agent_id: str
    name: Optional[str]
    tone: Optional[str] = None
    traits: List[str] = field(default_factory=list)
    description: Optional[str] = None
    personality_name: Optional[str] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    agent_uuid: Optional[str] = None
    asid: Optional[str] = None
    pricing: Optional[AgentPricing] = None
    created_at: Any = None
    updated_at: Any = None

    @property
    def display_name(self) -> str:
        return self.name or self.personality_name or "Assistant"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "agentId": self.agent_id,
            "agentUuid": self.agent_uuid,
            "name": self.name,
            "personalityName": self.personality_name,
            "description": self.description,
            "tone": self.tone,
            "traits": self.traits,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "systemPrompt": self.system_prompt,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.pricing:
            data["role"] = self.pricing.role
            data["price"] = float(self.pricing.price_amount) if self.pricing.price_amount else None
            data["currency"] = self.pricing.price_currency
        return data


def _pricing_from(row) -> AgentPricing:
    return AgentPricing(
        role=row.role or AgentRole.FREE.value,
        price_amount=row.price_amount,
        price_currency=(row.price_currency or "USD").upper(),
        name=row.name,
    )


def _profile_from_agent(agent: Agent) -> AgentProfile:
    return AgentProfile(
        id=agent.id,
        agent_id=str(agent.id),
        agent_uuid=agent.agent_uuid,
        name=agent.name,
        tone=agent.tone,
        traits=list(agent.trait_array or []),
        description=agent.description,
        personality_name=agent.personality_name,
        system_prompt=agent.system_prompt,
        model=agent.model,
        temperature=float(agent.temperature) if agent.temperature is not None else None,
        max_tokens=agent.max_tokens,
        pricing=_pricing_from(agent),
        created_at=agent.created_at,
        updated_at=agent.updated_at,
    )


def _profile_from_personality(personality: Personality) -> AgentProfile:
    return AgentProfile(
        id=personality.id,
        agent_id=personality.asid,
        name=personality.name,
        tone=personality.tone,
        traits=list(personality.trait_array or []),
        asid=personality.asid,
        pricing=_pricing_from(personality),
        created_at=personality.created_at,
    )


class AgentDirectory:
    """Read-only access to agents and legacy personalities."""

    def __init__(self, session_maker):
        self._session_maker = session_maker

    async def _find_agent(self, db, ref: AgentRef) -> Optional[Agent]:
        if ref.kind == AgentRefKind.AGENT_UUID:
            stmt = select(Agent).where(Agent.agent_uuid == ref.raw)
        elif ref.kind == AgentRefKind.AGENT_ID:
            stmt = select(Agent).where(Agent.id == int(ref.raw))
        else:
            return None
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_personality(self, db, ref: AgentRef) -> Optional[Personality]:
        result = await db.execute(select(Personality).where(Personality.asid == ref.raw))
        return result.scalar_one_or_none()

    async def resolve(self, ref: AgentRef) -> Optional[AgentProfile]:
        """Look the agent up by its primary key, falling back to the legacy table."""
        async with self._session_maker() as db:
            agent = await self._find_agent(db, ref)
            if agent:
                return _profile_from_agent(agent)
            personality = await self._find_personality(db, ref)
            if personality:
                logger.debug(f"Resolved {ref.raw} through legacy personality table")
                return _profile_from_personality(personality)
        return None

    async def get_pricing(self, ref: AgentRef) -> Optional[AgentPricing]:
        profile = await self.resolve(ref)
        return profile.pricing if profile else None

    async def list_agents(self) -> List[AgentProfile]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(Agent).where(Agent.is_active.is_(True)).order_by(Agent.name)
            )
            return [_profile_from_agent(a) for a in result.scalars().all()]

    async def canonical_key(self, ref: AgentRef) -> str:
        """Storage key for payments and history; the raw id when the agent is unknown."""
        profile = await self.resolve(ref)
        return profile.agent_id if profile else ref.raw

    async def list_personalities(self) -> List[AgentProfile]:
        async with self._session_maker() as db:
            result = await db.execute(select(Personality).order_by(Personality.name))
            return [_profile_from_personality(p) for p in result.scalars().all()]
