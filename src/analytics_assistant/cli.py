"""
Command-line interface for Analytics-Assistant.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import Settings, get_settings


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog. Run-scoped fields are merged from contextvars."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="analytics-assistant",
        description="Analytics-Assistant - conversational analytics over your dashboard",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the assistant server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Initialize the assistant (create .env, history database)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    if args.command == "serve":
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "config":
        ok = show_config(settings, args.check)
        if not ok:
            sys.exit(1)
    elif args.command == "init":
        init_assistant(settings)
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting Analytics-Assistant server", host=host, port=port)

    uvicorn.run(
        "analytics_assistant.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


def check_config(settings: Settings) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for the given settings."""
    errors = []
    warnings = []

    key_for_provider = {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
        "openrouter": settings.openrouter_api_key,
    }
    if not key_for_provider.get(settings.default_provider):
        errors.append(f"An API key for the default provider '{settings.default_provider}' is required")

    if not settings.backend_url:
        errors.append("BACKEND_URL is required")

    if not settings.forwarded_headers_list:
        warnings.append("No forwarded headers configured - backend calls will be unauthenticated")

    if settings.rate_limit_requests <= 0:
        warnings.append("Rate limiting is disabled")

    return errors, warnings


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False if the check found errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== Analytics-Assistant Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Router Model: {settings.router_model}")
    print(f"  Specialist Model: {settings.specialist_model}")
    print(f"  Orchestrator Model: {settings.orchestrator_model}")
    print(f"  Orchestrator Max Model: {settings.orchestrator_max_model}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nBackend:")
    print(f"  URL: {settings.backend_url}")
    print(f"  Timeout: {settings.backend_timeout_seconds}s")
    print(f"  Forwarded Headers: {', '.join(settings.forwarded_headers_list) or '(none)'}")

    print("\nAgents:")
    print(f"  Preview TTL: {settings.preview_ttl_minutes} min")
    print(f"  Read Retries: {settings.read_retry_attempts}")
    print(f"  Run Timeout: {settings.run_timeout_seconds}s")
    print(f"  Rate Limit: {settings.rate_limit_requests}/{settings.rate_limit_window_seconds}s")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors, warnings = check_config(settings)

    if errors:
        print("❌ Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("⚠️  Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("✅ Configuration looks good!")
    elif not errors:
        print("\n✅ Configuration is valid (with warnings)")
    else:
        print("\n❌ Configuration has errors - fix them before starting")

    return not errors


ENV_TEMPLATE = """# Analytics-Assistant Configuration

# === REQUIRED ===

# LLM API key for the default provider
ANTHROPIC_API_KEY=
# OPENAI_API_KEY=
# OPENROUTER_API_KEY=

# Dashboard backend
BACKEND_URL=http://localhost:3001

# === OPTIONAL ===

DEFAULT_PROVIDER=anthropic
# ROUTER_MODEL=claude-3-5-haiku-latest
# SPECIALIST_MODEL=claude-sonnet-4-20250514
# ORCHESTRATOR_MODEL=claude-sonnet-4-20250514
# ORCHESTRATOR_MAX_MODEL=claude-opus-4-20250514
# LLM_TIMEOUT_SECONDS=60
# LLM_MAX_RETRIES=2

# Headers forwarded from the caller to backend calls
FORWARDED_HEADERS=authorization,cookie,x-api-key

# Limits
RATE_LIMIT_REQUESTS=5
RATE_LIMIT_WINDOW_SECONDS=60
RUN_TIMEOUT_SECONDS=180
PREVIEW_TTL_MINUTES=10

# Server
HOST=0.0.0.0
PORT=8080
DEBUG=false

# Database (conversation history)
DATABASE_URL=sqlite+aiosqlite:///./data/assistant.db
"""


def init_assistant(settings: Settings) -> None:
    """Create a default .env and the conversation history tables."""
    from .api.app import ensure_sqlite_directory
    from .models import init_database

    env_file = Path(".env")
    if not env_file.exists():
        env_file.write_text(ENV_TEMPLATE)
        print(f"✅ Created {env_file}")
    else:
        print(f"ℹ️  {env_file} already exists")

    ensure_sqlite_directory(settings.database_url)
    asyncio.run(init_database(settings.database_url))
    print(f"✅ History database ready ({settings.database_url})")

    print("\n=== Next Steps ===")
    print("1. Edit .env and add an LLM API key")
    print("2. Point BACKEND_URL at your dashboard backend")
    print("3. Run: analytics-assistant serve")


if __name__ == "__main__":
    main()
