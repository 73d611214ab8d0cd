"""
Tool executor - runs tool calls for one assistant run.

Read-only tools may be retried once on a transport failure. Mutating tools
go through Preview then Commit, are never retried, and once a commit has
started it runs to completion even if the run is cancelled.
"""

import asyncio
from typing import Any

import structlog

from ..context import SessionContext
from ..errors import (
    AssistantError,
    ConfirmationRequired,
    TransportError,
    ValidationError,
    user_message_for,
)
from ..llm.base import ToolCall
from .base import Tool, ToolResult
from .confirmation import Commit, ConfirmationLedger, Preview

logger = structlog.get_logger()


async def wait_shielded(awaitable: Any) -> None:
    """Await to completion even if the caller is cancelled, then re-raise the cancellation."""
    future = asyncio.ensure_future(awaitable)
    cancelled = False
    while not future.done():
        try:
            await asyncio.shield(future)
        except asyncio.CancelledError:
            cancelled = True
    if cancelled:
        raise asyncio.CancelledError()


class ToolExecutor:
    """Executes tool calls bound to a single SessionContext."""

    def __init__(
        self,
        ctx: SessionContext,
        ledger: ConfirmationLedger,
        read_retry_attempts: int = 1,
    ):
        self.ctx = ctx
        self.ledger = ledger
        self.read_retry_attempts = read_retry_attempts
        self._inflight: set[asyncio.Task] = set()

    async def execute(self, tool: Tool, arguments: dict[str, Any]) -> ToolResult:
        """Execute one tool call. Never raises for tool failures."""
        log = logger.bind(tool=tool.name)

        try:
            params = tool.parse(arguments)
        except ValidationError as e:
            log.info("Tool input rejected", errors=e.messages)
            return _error_result(tool.name, arguments, e)

        try:
            if tool.mutating:
                return await self._run_mutation(tool, params)

            data = await self._run_read(tool, params)
            log.info("Tool executed", mutating=False)
            return ToolResult(
                success=True,
                data=data,
                kind="read",
                tool_name=tool.name,
                arguments=params.model_dump(mode="json"),
            )
        except AssistantError as e:
            log.warning("Tool failed", error=str(e), error_type=type(e).__name__)
            return _error_result(tool.name, arguments, e)
        except Exception as e:
            log.exception("Unexpected tool error")
            return _error_result(tool.name, arguments, e)

    async def execute_batch(self, calls: list[ToolCall], toolset: dict[str, Tool]) -> list[ToolResult]:
        """Execute the tool calls of one model turn.

        Read-only calls run concurrently; mutating calls run one at a time in
        the order the model issued them. Results come back in call order.
        """
        results: list[ToolResult | None] = [None] * len(calls)
        reads: list[tuple[int, Tool, ToolCall]] = []
        writes: list[tuple[int, Tool, ToolCall]] = []

        for index, call in enumerate(calls):
            tool = toolset.get(call.name)
            if tool is None:
                logger.warning("Tool not available to agent", tool=call.name)
                results[index] = ToolResult(
                    success=False,
                    error=f"Tool '{call.name}' is not available.",
                    kind="error",
                    tool_name=call.name,
                    arguments=call.arguments,
                )
            elif tool.mutating:
                writes.append((index, tool, call))
            else:
                reads.append((index, tool, call))

        if reads:
            outcomes = await asyncio.gather(
                *(self.execute(tool, call.arguments) for _, tool, call in reads)
            )
            for (index, _, _), outcome in zip(reads, outcomes):
                results[index] = outcome

        for index, tool, call in writes:
            results[index] = await self.execute(tool, call.arguments)

        return [r for r in results if r is not None]

    async def drain(self) -> None:
        """Wait for every commit that is still in flight.

        Cancelling the caller does not reach the commits: the wait resumes
        until they finish and the cancellation is raised afterwards.
        """
        if not self._inflight:
            return
        logger.info("Waiting for in-flight commits", count=len(self._inflight))
        await wait_shielded(asyncio.gather(*list(self._inflight), return_exceptions=True))

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def _run_read(self, tool: Tool, params: Any) -> Any:
        attempt = 0
        while True:
            try:
                return await tool.handler(params)
            except TransportError as e:
                if attempt >= self.read_retry_attempts:
                    raise
                attempt += 1
                logger.info("Retrying read-only tool", tool=tool.name, attempt=attempt, error=str(e))

    async def _run_mutation(self, tool: Tool, params: Any) -> ToolResult:
        arguments = params.model_dump(mode="json")

        if not params.confirmed:
            return await self._preview(tool, params, arguments)

        try:
            self.ledger.consume(self.ctx.conversation_id, tool.name, arguments)
        except ConfirmationRequired:
            return await self._preview(tool, params, arguments)

        return await self._commit(tool, params, arguments)

    async def _preview(self, tool: Tool, params: Any, arguments: dict[str, Any]) -> ToolResult:
        preview: Preview = await tool.preview(params)
        if preview.confirmation_required:
            pending = self.ledger.record(self.ctx.conversation_id, tool.name, arguments)
            preview.preview_id = pending.id
        logger.info("Preview produced", tool=tool.name, confirmation_required=preview.confirmation_required)
        return preview.to_result(arguments)

    async def _commit(self, tool: Tool, params: Any, arguments: dict[str, Any]) -> ToolResult:
        task = asyncio.ensure_future(tool.commit(params))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        commit: Commit = await asyncio.shield(task)
        logger.info("Mutation committed", tool=tool.name)
        return commit.to_result(arguments)


def _error_result(tool_name: str, arguments: dict[str, Any], error: BaseException) -> ToolResult:
    return ToolResult(
        success=False,
        error=user_message_for(error),
        kind="error",
        tool_name=tool_name,
        arguments=arguments,
    )
