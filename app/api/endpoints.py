"""API endpoints for the agent chat service."""

import time
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from app import __version__
from app.agents.registry import get_agent_by_id, get_all_agents
from app.agents.runtime import AgentRuntime, get_agent_runtime
from app.api.rate_limit import ChatRateLimiter, get_rate_limiter
from app.models.conversation import ChatRequest, HealthResponse
from app.utils.ids import generate_id
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _validation_detail(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    if location.startswith("messages"):
        return "Invalid request: each message must have 'role' and 'content' properties"
    if location.startswith("agentId"):
        return "Invalid request: agentId must be a non-empty string"
    return f"Invalid request: {location or 'body'}: {first['msg']}"


@router.post("/api/chat", tags=["Chat"])
async def chat(
    request: Request,
    runtime: AgentRuntime | None = Depends(get_agent_runtime),
    rate_limiter: ChatRateLimiter = Depends(get_rate_limiter),
) -> StreamingResponse:
    """Forward a conversation to an agent and stream its reply as plain text."""
    request_id = f"req_{generate_id()}"
    started = time.perf_counter()

    try:
        body = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid request: body must be JSON") from e

    if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
        raise HTTPException(status_code=400, detail="Invalid request: messages array is required")

    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"[{request_id}] Rejected chat request: {e.errors()[0]['msg']}")
        raise HTTPException(status_code=400, detail=_validation_detail(e)) from e

    agent_id = chat_request.agent_id
    last_content = chat_request.messages[-1].content if chat_request.messages else ""
    logger.info(f"[{request_id}] {len(chat_request.messages)} messages for {agent_id}: {last_content[:50]}...")

    agent_config = get_agent_by_id(agent_id)
    if agent_config is None:
        logger.warning(f"[{request_id}] Invalid agent ID requested: {agent_id}")
        raise HTTPException(
            status_code=404,
            detail={
                "error": "Invalid agent ID",
                "details": f"Agent '{agent_id}' not found",
                "availableAgents": [agent.id for agent in get_all_agents()],
            },
        )

    client_id = request.client.host if request.client else "anonymous"
    if not rate_limiter.hit(client_id):
        raise HTTPException(status_code=429, detail="Too many requests")

    if runtime is None:
        logger.error(f"[{request_id}] Agent runtime not available")
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")

    agent = runtime.get_agent(agent_id)
    if agent is None:
        logger.error(f"[{request_id}] Agent not found in runtime: {agent_id}")
        raise HTTPException(
            status_code=503,
            detail=f"Agent '{agent_id}' ({agent_config.name}) is not available",
        )

    try:
        chunks = agent.stream(chat_request.messages)
        first_chunk = await anext(chunks, None)
    except Exception as e:
        elapsed = time.perf_counter() - started
        logger.error(f"[{request_id}] Chat stream setup failed after {elapsed:.3f}s: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error") from e

    logger.info(f"[{request_id}] Stream ready after {time.perf_counter() - started:.3f}s")

    async def body_stream() -> AsyncIterator[str]:
        if first_chunk is not None:
            yield first_chunk
        async for chunk in chunks:
            yield chunk

    return StreamingResponse(
        body_stream(),
        media_type="text/plain; charset=utf-8",
        headers={"X-Agent-Id": agent_id, "X-Request-Id": request_id},
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
