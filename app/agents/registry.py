"""Registry of the agents exposed through the chat API."""

import re

from app.models.agent import Agent, AgentValidationResult

DEFAULT_AGENT_ID = "weatherAgent"

AVAILABLE_AGENTS: dict[str, Agent] = {
    "weatherAgent": Agent(
        id="weatherAgent",
        name="Weather Agent",
        description="Provides weather information and activity suggestions",
        icon="🌤️",
        color="blue",
        instructions=(
            "You provide weather information and suggest activities suited to the day's weather.\n"
            "- Fetch real-time weather data\n"
            "- Explain the forecast in detail\n"
            "- Suggest activities, clothing and outing advice that fit the weather"
        ),
    ),
    "researchAgent": Agent(
        id="researchAgent",
        name="Research Agent",
        description="Investigates a topic from several angles and writes a report",
        icon="🔍",
        color="purple",
        placeholder="Enter a topic to research (e.g. AI market trends, comparison of web frameworks)",
        instructions=(
            "You are an autonomous research agent that gathers information from several angles "
            "and produces an analytical report.\n"
            "- Collect information with real-time web search\n"
            "- Investigate the topic from multiple perspectives\n"
            "- Write a detailed report with a reliability assessment for each source\n"
            "- Confirm the search plan with the user before starting"
        ),
    ),
}

EMPTY_AGENT_ID = "EMPTY_AGENT_ID"
INVALID_FORMAT = "INVALID_FORMAT"
AGENT_NOT_FOUND = "AGENT_NOT_FOUND"

_AGENT_ID_CHARS = re.compile(r"^[a-zA-Z0-9_-]+$")


def get_agent_by_id(agent_id: str) -> Agent | None:
    """Look up an agent by id."""
    return AVAILABLE_AGENTS.get(agent_id)


def get_all_agents() -> list[Agent]:
    """Return every registered agent, in registration order."""
    return list(AVAILABLE_AGENTS.values())


def validate_agent_id(agent_id: str | None, include_suggestions: bool = True) -> AgentValidationResult:
    """Validate an agent id against format rules and the registry.

    Args:
        agent_id: Candidate agent id
        include_suggestions: Attach up to three similar agent ids on failure

    Returns:
        Validation result; ``agent`` is set when the id is valid
    """
    if not agent_id or not agent_id.strip():
        return AgentValidationResult(
            is_valid=False,
            agent_id=agent_id or "",
            error="Agent ID cannot be empty",
            error_code=EMPTY_AGENT_ID,
            suggestions=_suggest("") if include_suggestions else None,
        )

    format_error = _check_format(agent_id)
    if format_error:
        return AgentValidationResult(
            is_valid=False,
            agent_id=agent_id,
            error=format_error,
            error_code=INVALID_FORMAT,
            suggestions=_suggest(agent_id) if include_suggestions else None,
        )

    agent = get_agent_by_id(agent_id)
    if agent is None:
        return AgentValidationResult(
            is_valid=False,
            agent_id=agent_id,
            error=f"Agent '{agent_id}' not found in available agents",
            error_code=AGENT_NOT_FOUND,
            suggestions=_suggest(agent_id) if include_suggestions else None,
        )

    return AgentValidationResult(is_valid=True, agent_id=agent_id, agent=agent)


def is_valid_agent_id(agent_id: str | None) -> bool:
    """Return True when the agent id passes validation."""
    return validate_agent_id(agent_id, include_suggestions=False).is_valid


def _check_format(agent_id: str) -> str | None:
    if len(agent_id) < 3:
        return "Agent ID must be at least 3 characters long"
    if len(agent_id) > 50:
        return "Agent ID must be 50 characters or less"
    if not _AGENT_ID_CHARS.match(agent_id):
        return "Agent ID can only contain letters, numbers, hyphens, and underscores"
    if not agent_id[0].isalpha():
        return "Agent ID must start with a letter"
    return None


def _suggest(agent_id: str) -> list[str]:
    """Rank registered agents by similarity to a rejected id."""
    agents = get_all_agents()
    if not agent_id.strip():
        return [agent.id for agent in agents[:3]]

    needle = agent_id.lower()
    scored: list[tuple[int, str]] = []
    for agent in agents:
        agent_key = agent.id.lower()
        agent_name = agent.name.lower()

        score = 0
        if needle in agent_key:
            score += 10
        if needle in agent_name:
            score += 8
        if agent_key.startswith(needle):
            score += 15
        if agent_name.startswith(needle):
            score += 12
        score += max(0, 10 - levenshtein_distance(needle, agent_key))

        if score > 5:
            scored.append((score, agent.id))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [agent_id for _, agent_id in scored[:3]]


def levenshtein_distance(left: str, right: str) -> int:
    """Edit distance between two strings."""
    previous = list(range(len(left) + 1))
    for j, right_char in enumerate(right, start=1):
        current = [j]
        for i, left_char in enumerate(left, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(current[i - 1] + 1, previous[i] + 1, previous[i - 1] + cost))
        previous = current
    return previous[-1]
