"""
One assistant run: route, run the chosen agent, stream the result.
"""

import asyncio
from typing import AsyncIterator

import structlog

from ..context import SessionContext
from ..errors import GENERIC_ERROR_MESSAGE, BudgetExceededError
from ..memory import HistoryMessage, HistoryStore
from ..streaming import StreamEmitter, build_response_data
from ..tools import ToolExecutor
from ..tools.executor import wait_shielded
from .core import AgentResult, AgentRunner
from .definitions import TRIAGE, AgentDefinition

logger = structlog.get_logger()

TIMEOUT_MESSAGE = "This request took too long to answer. Try a narrower question."


class ChatRun:
    """A single request's run. Owns the executor and the agents built for it."""

    def __init__(
        self,
        ctx: SessionContext,
        agents: dict[str, AgentDefinition],
        history_store: HistoryStore,
        executor: ToolExecutor,
        entry_agent: str = TRIAGE,
    ):
        self.ctx = ctx
        self.agents = agents
        self.history_store = history_store
        self.executor = executor
        self.entry_agent = entry_agent

    def history_limit(self) -> int:
        """Messages to load: enough for the agent with the largest tier."""
        return max(agent.memory_tier.message_limit for agent in self.agents.values())

    async def execute(self, message: str, emitter: StreamEmitter) -> AgentResult | None:
        """Run to a terminal frame.

        Failures become an error frame. Cancellation waits for in-flight
        commits and then propagates.
        """
        runner = AgentRunner(self.agents, self.executor, emitter)
        emitter.thinking("Thinking...")

        try:
            history = await self.history_store.read(self.ctx.conversation_id, self.history_limit())
            result = await self._dispatch(runner, message, history, emitter)
        except asyncio.CancelledError:
            logger.info("Run cancelled", inflight_commits=self.executor.inflight_count)
            await self.executor.drain()
            raise
        except BudgetExceededError as e:
            logger.warning("Run stopped by budget", agent=e.agent, limit=e.limit, ceiling=e.ceiling)
            emitter.error(e.user_message)
            return None
        except Exception:
            logger.exception("Run failed")
            emitter.error(GENERIC_ERROR_MESSAGE)
            return None

        emitter.complete(result.content, build_response_data(result.content, result.tool_results))
        await self._remember(message, result)
        logger.info(
            "Run complete",
            agent=result.agent,
            turns=result.turns,
            steps=result.steps,
            pending_previews=len(result.previews),
        )
        return result

    async def _dispatch(
        self,
        runner: AgentRunner,
        message: str,
        history: list[HistoryMessage],
        emitter: StreamEmitter,
    ) -> AgentResult:
        entry = self.agents[self.entry_agent]
        if entry.name != TRIAGE:
            return await runner.run_agent(entry, message, history)

        decision = await runner.route(entry, message, history)
        if not decision.is_handoff:
            return AgentResult(agent=TRIAGE, content=decision.answer or "", turns=decision.turns)

        target = self.agents[decision.target]
        emitter.progress(f"Handing off to the {target.name} agent")
        return await runner.run_agent(target, message, history, note=decision.instruction)

    async def _remember(self, message: str, result: AgentResult) -> None:
        try:
            await self.history_store.append(
                self.ctx.conversation_id,
                [
                    HistoryMessage(role="user", content=message),
                    HistoryMessage(
                        role="assistant",
                        content=result.content,
                        agent=result.agent,
                        previews=result.previews,
                    ),
                ],
                tenant_id=self.ctx.tenant_id,
                website_id=self.ctx.website_id,
                user_id=self.ctx.caller.user_id,
            )
        except Exception:
            logger.exception("Failed to save conversation history")


async def stream_chat(
    run: ChatRun,
    message: str,
    timeout: float | None = None,
) -> AsyncIterator[str]:
    """Run in a producer task and yield NDJSON lines as frames arrive.

    If the consumer stops iterating (client disconnect), the emitter is
    closed and the run cancelled; in-flight commits still finish.
    """
    emitter = StreamEmitter()

    async def produce() -> None:
        with structlog.contextvars.bound_contextvars(**run.ctx.log_fields()):
            try:
                await asyncio.wait_for(run.execute(message, emitter), timeout)
            except asyncio.TimeoutError:
                logger.warning("Run timed out", timeout=timeout)
                emitter.error(TIMEOUT_MESSAGE)
            finally:
                emitter.close()

    task = asyncio.create_task(produce())
    try:
        async for event in emitter.frames():
            yield event.to_line()
    finally:
        if not task.done():
            logger.info("Client went away, cancelling run", correlation_id=run.ctx.correlation_id)
            emitter.close()
            task.cancel()
        await wait_shielded(asyncio.gather(task, return_exceptions=True))
