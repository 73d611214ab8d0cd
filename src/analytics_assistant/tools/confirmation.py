"""
Confirmation ledger - the preview half of the two-step mutation protocol.

Every mutating tool first returns a Preview describing exactly what would
change. The preview is recorded here, keyed by conversation, tool name and a
digest of the canonical arguments. A later call with ``confirmed=true`` may
only commit if it consumes a matching, unexpired, unconsumed entry. Entries
are consumed exactly once, so a replayed confirmation cannot commit twice.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from ..errors import ConfirmationRequired
from .base import ToolResult

logger = structlog.get_logger()

CONFIRM_INSTRUCTION = (
    "Show this preview to the user and ask them to confirm. "
    "If they confirm, call the same tool again with the same arguments and confirmed=true."
)


@dataclass
class Preview:
    """What a mutation would do. Performing it has no side effects."""

    tool_name: str
    message: str
    fields: dict[str, Any] = field(default_factory=dict)
    changes: list[str] = field(default_factory=list)
    confirmation_required: bool = True
    preview_id: str | None = None

    def to_result(self, arguments: dict[str, Any] | None = None) -> ToolResult:
        data: dict[str, Any] = {
            "preview": True,
            "message": self.message,
            "fields": self.fields,
            "confirmationRequired": self.confirmation_required,
        }
        if self.changes:
            data["changes"] = self.changes
        if self.confirmation_required:
            data["previewId"] = self.preview_id
            data["instruction"] = CONFIRM_INSTRUCTION
        return ToolResult(
            success=True,
            output=self.message,
            data=data,
            kind="preview",
            tool_name=self.tool_name,
            arguments=arguments or {},
        )


@dataclass
class Commit:
    """Outcome of a performed mutation."""

    tool_name: str
    message: str
    payload: Any = None

    def to_result(self, arguments: dict[str, Any] | None = None) -> ToolResult:
        return ToolResult(
            success=True,
            output=self.message,
            data={"success": True, "message": self.message, "result": self.payload},
            kind="commit",
            tool_name=self.tool_name,
            arguments=arguments or {},
        )


def canonical_digest(arguments: dict[str, Any]) -> str:
    """Stable digest of tool arguments, ignoring the ``confirmed`` flag."""
    payload = {k: v for k, v in arguments.items() if k != "confirmed"}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class PendingPreview:
    """A preview shown to the user and waiting for confirmation."""
    id: str
    conversation_id: str
    tool_name: str
    args_digest: str
    arguments: dict[str, Any]
    ttl: timedelta = timedelta(minutes=10)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    consumed: bool = False

    @property
    def expires_at(self) -> datetime:
        return self.created_at + self.ttl

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at

    @property
    def is_pending(self) -> bool:
        return not self.consumed and not self.is_expired

    def matches(self, conversation_id: str, tool_name: str, args_digest: str) -> bool:
        return (
            self.conversation_id == conversation_id
            and self.tool_name == tool_name
            and self.args_digest == args_digest
        )


class ConfirmationLedger:
    """Process-wide record of previews awaiting confirmation."""

    def __init__(self, ttl_minutes: int = 10):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._pending: dict[str, PendingPreview] = {}

    def record(
        self,
        conversation_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> PendingPreview:
        """Record a preview. Re-previewing identical arguments refreshes the entry."""
        self._cleanup_expired()
        digest = canonical_digest(arguments)

        for existing in list(self._pending.values()):
            if existing.matches(conversation_id, tool_name, digest):
                self._pending.pop(existing.id, None)

        pending = PendingPreview(
            id=uuid.uuid4().hex[:12],
            conversation_id=conversation_id,
            tool_name=tool_name,
            args_digest=digest,
            arguments={k: v for k, v in arguments.items() if k != "confirmed"},
            ttl=self.ttl,
        )
        self._pending[pending.id] = pending

        logger.info(
            "Preview recorded",
            preview_id=pending.id,
            tool=tool_name,
            conversation_id=conversation_id,
        )
        return pending

    def consume(
        self,
        conversation_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> PendingPreview:
        """Consume the matching preview or raise ConfirmationRequired.

        Must stay synchronous: no await between the match and the consumed flag.
        """
        digest = canonical_digest(arguments)

        for pending in self._pending.values():
            if pending.matches(conversation_id, tool_name, digest) and pending.is_pending:
                pending.consumed = True
                logger.info("Preview consumed", preview_id=pending.id, tool=tool_name)
                return pending

        logger.info(
            "Commit without matching preview",
            tool=tool_name,
            conversation_id=conversation_id,
        )
        raise ConfirmationRequired(tool_name)

    def get_pending(self, preview_id: str) -> PendingPreview | None:
        return self._pending.get(preview_id)

    def list_pending(self, conversation_id: str | None = None) -> list[PendingPreview]:
        """List unexpired, unconsumed previews, optionally for one conversation."""
        self._cleanup_expired()
        return [
            p for p in self._pending.values()
            if p.is_pending and (conversation_id is None or p.conversation_id == conversation_id)
        ]

    def _cleanup_expired(self) -> None:
        stale = [pid for pid, p in self._pending.items() if not p.is_pending]
        for pid in stale:
            self._pending.pop(pid, None)
