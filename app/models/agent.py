"""Agent descriptor models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Agent:
    """An agent users can chat with."""

    id: str
    name: str
    description: str
    icon: str
    color: str
    instructions: str
    placeholder: str = ""


@dataclass
class AgentValidationResult:
    """Outcome of validating an agent id."""

    is_valid: bool
    agent_id: str
    agent: Agent | None = None
    error: str | None = None
    error_code: str | None = None
    suggestions: list[str] | None = None
