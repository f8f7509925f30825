"""Agent registry and runtime boundary."""

from app.agents.registry import DEFAULT_AGENT_ID, get_agent_by_id, get_all_agents, validate_agent_id

__all__ = ["DEFAULT_AGENT_ID", "get_agent_by_id", "get_all_agents", "validate_agent_id"]
