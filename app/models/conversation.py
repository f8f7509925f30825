"""Request and response models for the chat API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.agents.registry import DEFAULT_AGENT_ID


class ChatMessage(BaseModel):
    """One {role, content} entry handed to an agent."""

    role: Literal["user", "assistant", "system"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    """Request body for ``POST /api/chat``."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage]
    agent_id: str = Field(default=DEFAULT_AGENT_ID, alias="agentId")

    @field_validator("agent_id")
    @classmethod
    def agent_id_not_blank(cls, value: str) -> str:
        """Reject empty or whitespace-only agent ids."""
        if not value.strip():
            raise ValueError("agentId must be a non-empty string")
        return value


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
