"""
Session context for a single assistant run.

A SessionContext is built once per inbound request and threaded into every
tool and agent of that run. It is immutable and never shared across runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated caller, as resolved by the auth system."""

    user_id: str
    email: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class SessionContext:
    """Immutable per-run context."""

    tenant_id: str
    resource_id: str
    domain: str
    timezone: str
    current_time: datetime
    correlation_id: str
    caller: CallerIdentity
    conversation_id: str
    transport_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def website_id(self) -> str:
        return self.resource_id

    def for_prompt(self) -> str:
        """Background block included in every agent's instructions."""
        return (
            "<background>\n"
            f"Website ID: {self.resource_id}\n"
            f"Website domain: {self.domain}\n"
            f"Timezone: {self.timezone}\n"
            f"Current date: {self.current_time.date().isoformat()}\n"
            f"Current time: {self.current_time.isoformat(timespec='seconds')}\n"
            "</background>"
        )

    def log_fields(self) -> dict[str, Any]:
        """Fields bound into the structured logging context for this run."""
        return {
            "correlation_id": self.correlation_id,
            "tenant_id": self.tenant_id,
            "website_id": self.resource_id,
            "conversation_id": self.conversation_id,
            "user_id": self.caller.user_id,
        }


def resolve_timezone(name: str | None) -> str:
    """Return a valid IANA timezone name, falling back to UTC."""
    if not name:
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, using UTC", timezone=name)
        return "UTC"
    return name


def build_session_context(
    *,
    tenant_id: str,
    resource_id: str,
    domain: str,
    caller: CallerIdentity,
    conversation_id: str,
    timezone: str | None = None,
    headers: Mapping[str, str] | None = None,
    forwarded_headers: list[str] | None = None,
    now: datetime | None = None,
) -> SessionContext:
    """Build the immutable context for one run.

    Only headers named in ``forwarded_headers`` (case-insensitive) are kept
    for backend calls. ``now`` may be passed for deterministic tests; it is
    converted to the resolved timezone.
    """
    tz_name = resolve_timezone(timezone)
    tz = ZoneInfo(tz_name)
    current_time = now.astimezone(tz) if now else datetime.now(tz)

    allowed = {h.lower() for h in (forwarded_headers or [])}
    kept = {
        key.lower(): value
        for key, value in (headers or {}).items()
        if key.lower() in allowed
    }

    return SessionContext(
        tenant_id=tenant_id,
        resource_id=resource_id,
        domain=domain,
        timezone=tz_name,
        current_time=current_time,
        correlation_id=uuid4().hex,
        caller=caller,
        conversation_id=conversation_id,
        transport_headers=MappingProxyType(kept),
    )
