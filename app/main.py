"""Main FastAPI application."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.agents.registry import get_all_agents
from app.agents.runtime import get_agent_runtime
from app.api.endpoints import router
from app.api.rate_limit import get_rate_limiter
from app.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the agent runtime up front so a missing API key shows at boot."""
    agent_ids = ", ".join(agent.id for agent in get_all_agents())
    if get_agent_runtime() is None:
        logger.warning(f"Starting without an agent runtime; /api/chat will answer 503 (agents: {agent_ids})")
    else:
        logger.info(f"Serving agents: {agent_ids}")
    logger.info(f"Chat rate limit: {get_rate_limiter().limit}")
    yield


app = FastAPI(
    title="Agent Chat",
    description=(
        "Chat API in front of LangGraph agents. Replies are streamed as plain text; "
        "clients persist each user/assistant pair once the stream completes."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Chat",
            "description": "Send a conversation to an agent and stream its reply.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-Agent-Id", "X-Request-Id"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
