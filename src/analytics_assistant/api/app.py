"""
FastAPI application factory.

Manages the lifecycle of the process-wide services:
- Model clients (one pool shared by every run)
- Backend RPC client
- Conversation history database
- Confirmation ledger and rate limiter
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator, Literal
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.engine import make_url

from .. import __version__
from ..agent import ChatRun, build_agents, entry_agent_for, stream_chat
from ..backend import BackendClient
from ..config import Settings, get_settings
from ..context import CallerIdentity, build_session_context
from ..errors import AuthError, NotFoundError, RPCError
from ..llm import ModelPool
from ..memory import HistoryStore, SqlHistoryStore
from ..models import init_database
from ..tools import ConfirmationLedger, ToolExecutor
from .rate_limit import RateLimiter

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    """Everything a request needs that outlives the request."""

    settings: Settings
    models: ModelPool
    backend: BackendClient
    history: HistoryStore
    ledger: ConfirmationLedger
    limiter: RateLimiter

    @classmethod
    async def create(cls, settings: Settings) -> "ServiceContainer":
        ensure_sqlite_directory(settings.database_url)
        session_maker = await init_database(settings.database_url)
        logger.info("Database initialized")

        return cls(
            settings=settings,
            models=ModelPool.from_settings(settings),
            backend=BackendClient(settings.backend_url, timeout=settings.backend_timeout_seconds),
            history=SqlHistoryStore(session_maker),
            ledger=ConfirmationLedger(ttl_minutes=settings.preview_ttl_minutes),
            limiter=RateLimiter(
                limit=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    async def aclose(self) -> None:
        await self.backend.aclose()
        await self.models.aclose()


def ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class MessagePart(BaseModel):
    type: str = "text"
    text: str = ""


class ChatMessage(BaseModel):
    """An inbound message: plain text or structured parts."""

    role: Literal["user"] = "user"
    text: str | None = None
    parts: list[MessagePart] = Field(default_factory=list)

    def content(self) -> str:
        if self.text:
            return self.text
        return "\n".join(part.text for part in self.parts if part.type == "text" and part.text)


class ChatRequest(BaseModel):
    """Body of POST /v1/assistant/stream. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    website_id: str
    message: ChatMessage
    conversation_id: str | None = None
    timezone: str | None = None
    model: Literal["chat", "agent", "agent-max"] = "chat"


async def authenticate(backend: BackendClient, headers: dict[str, str]) -> CallerIdentity:
    """Resolve the caller through the auth system. Raises 401 when there is none."""
    try:
        session = await backend.call("auth.getSession", {}, headers=headers)
    except RPCError as e:
        logger.info("Authentication failed", error=str(e))
        raise HTTPException(status_code=401, detail="Authentication required") from e

    user = (session or {}).get("user") if isinstance(session, dict) else None
    if not user or not user.get("id"):
        raise HTTPException(status_code=401, detail="Authentication required")

    return CallerIdentity(
        user_id=str(user["id"]),
        email=user.get("email"),
        role=user.get("role"),
    )


async def load_website(backend: BackendClient, website_id: str, headers: dict[str, str]) -> dict[str, Any]:
    """Fetch the website the caller wants to talk about, enforcing access."""
    try:
        website = await backend.call("websites.getById", {"id": website_id}, headers=headers)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.user_message) from e
    except AuthError as e:
        raise HTTPException(status_code=403, detail=e.user_message) from e
    except RPCError as e:
        logger.error("Website lookup failed", website_id=website_id, error=str(e))
        raise HTTPException(status_code=500, detail=e.user_message) from e

    if not website:
        raise HTTPException(status_code=404, detail="Website not found")
    return website


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    services: ServiceContainer | None = getattr(app.state, "services", None)
    owned = services is None

    if services is None:
        services = await ServiceContainer.create(app.state.settings)
        app.state.services = services
    logger.info("Services ready", backend_url=services.settings.backend_url)

    yield

    if owned:
        await services.aclose()
    logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    services: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or (services.settings if services else get_settings())

    app = FastAPI(
        title="Analytics-Assistant",
        description="Conversational analytics assistant",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "llm_configured": bool(
                settings.anthropic_api_key
                or settings.openai_api_key
                or settings.openrouter_api_key
            ),
            "default_provider": settings.default_provider,
        }

    @app.post("/v1/assistant/stream")
    async def assistant_stream(body: ChatRequest, request: Request):
        """Run the assistant and stream NDJSON frames."""
        services: ServiceContainer = request.app.state.services
        settings = services.settings

        message = body.message.content().strip()
        if not message:
            raise HTTPException(status_code=400, detail="Message is empty")
        if len(message) > settings.max_message_length:
            raise HTTPException(
                status_code=400,
                detail=f"Message is longer than {settings.max_message_length} characters",
            )

        allowed = settings.forwarded_headers_list
        forwarded = {k.lower(): v for k, v in request.headers.items() if k.lower() in allowed}

        caller = await authenticate(services.backend, forwarded)

        if not services.limiter.check(caller.user_id):
            retry_after = services.limiter.retry_after(caller.user_id)
            logger.info("Rate limited", user_id=caller.user_id, retry_after=retry_after)
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please wait before sending another message.",
                headers={"Retry-After": str(retry_after or settings.rate_limit_window_seconds)},
            )

        website = await load_website(services.backend, body.website_id, forwarded)

        ctx = build_session_context(
            tenant_id=str(website.get("organizationId") or caller.user_id),
            resource_id=body.website_id,
            domain=website.get("domain") or "",
            caller=caller,
            conversation_id=body.conversation_id or uuid4().hex,
            timezone=body.timezone,
            headers=forwarded,
            forwarded_headers=allowed,
        )

        agents = build_agents(ctx, services.backend, services.models)
        executor = ToolExecutor(ctx, services.ledger, read_retry_attempts=settings.read_retry_attempts)
        run = ChatRun(ctx, agents, services.history, executor, entry_agent=entry_agent_for(body.model))

        logger.info("Assistant run started", model=body.model, **ctx.log_fields())

        return StreamingResponse(
            stream_chat(run, message, timeout=settings.run_timeout_seconds),
            media_type="application/x-ndjson",
            headers={
                "X-Correlation-Id": ctx.correlation_id,
                "X-Conversation-Id": ctx.conversation_id,
            },
        )

    return app
