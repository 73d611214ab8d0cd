"""
Agent runner.

Runs the router and the bounded specialist/orchestrator loops:
1. The router makes exactly one decision turn and may only call the handoff tool
2. Specialists call their tools through the ToolExecutor until they answer
3. Orchestrators delegate sub-questions to specialists through the handoff tool
4. Turn and step ceilings are hard limits enforced before any tool runs
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..context import SessionContext
from ..errors import BudgetExceededError, ValidationError
from ..llm import LLMMessage, ToolCall
from ..memory import HistoryMessage
from ..streaming import StreamEmitter
from ..tools import ToolExecutor, ToolResult
from .definitions import DEFAULT_SPECIALIST, AgentDefinition

logger = structlog.get_logger()


@dataclass
class RouterDecision:
    """Outcome of the router's single turn: a handoff target or a direct answer."""

    target: str | None = None
    instruction: str = ""
    answer: str | None = None
    turns: int = 1

    @property
    def is_handoff(self) -> bool:
        return self.target is not None


@dataclass
class AgentResult:
    """Final answer of one agent run with its budget usage."""

    agent: str
    content: str = ""
    turns: int = 0
    steps: int = 0
    tool_results: list[ToolResult] = field(default_factory=list)
    previews: list[dict[str, Any]] = field(default_factory=list)


class AgentRunner:
    """Runs agents for a single request."""

    def __init__(
        self,
        agents: dict[str, AgentDefinition],
        executor: ToolExecutor,
        emitter: StreamEmitter | None = None,
    ):
        self.agents = agents
        self.executor = executor
        self.emitter = emitter

    @property
    def ctx(self) -> SessionContext:
        return self.executor.ctx

    def history_for(
        self,
        agent: AgentDefinition,
        history: list[HistoryMessage],
        label_agent: bool = False,
    ) -> list[LLMMessage]:
        """The slice of history visible to an agent, per its memory tier."""
        limit = agent.memory_tier.message_limit
        if limit <= 0:
            return []
        return [msg.to_llm_message(label_agent=label_agent) for msg in history[-limit:]]

    async def route(
        self,
        triage: AgentDefinition,
        message: str,
        history: list[HistoryMessage],
    ) -> RouterDecision:
        """Make the routing decision for a message.

        Exactly one model call. Only the handoff tool is offered; any other
        tool call, an invalid target or an empty reply falls back to the
        default specialist so the router never stalls.
        """
        messages = self.history_for(triage, history, label_agent=True)
        messages.append(LLMMessage(role="user", content=message))

        response = await triage.llm.generate(
            messages=messages,
            tools=[triage.handoff.to_definition()],
            system_prompt=triage.instructions(self.ctx),
            temperature=triage.temperature,
            tool_choice=triage.tool_choice,
        )

        if response.tool_calls:
            call = response.tool_calls[0]
            if call.name != triage.handoff.name:
                logger.warning("Router called a non-handoff tool", tool=call.name)
                return RouterDecision(target=DEFAULT_SPECIALIST)
            try:
                request = triage.handoff.parse(call.arguments)
            except ValidationError as e:
                logger.warning("Router picked an invalid target", errors=e.messages)
                return RouterDecision(target=DEFAULT_SPECIALIST)
            logger.info("Routed", target=request.target)
            return RouterDecision(target=request.target, instruction=request.instruction)

        if response.content.strip():
            logger.info("Router answered directly")
            return RouterDecision(answer=response.content)

        logger.info("Router returned nothing, using default specialist")
        return RouterDecision(target=DEFAULT_SPECIALIST)

    async def run_agent(
        self,
        agent: AgentDefinition,
        message: str,
        history: list[HistoryMessage],
        note: str = "",
    ) -> AgentResult:
        """Run an agent's tool loop until it produces a final answer.

        Raises BudgetExceededError when the model asks for tools it has no
        turns or steps left to use. Nothing is executed in that case.
        """
        log = logger.bind(agent=agent.name)
        result = AgentResult(agent=agent.name)

        system_prompt = agent.instructions(self.ctx)
        if note:
            system_prompt = f"{system_prompt}\n\n<handoff-note>\n{note}\n</handoff-note>"

        messages = self.history_for(agent, history)
        messages.append(LLMMessage(role="user", content=message))
        tools = agent.tool_definitions()

        while True:
            response = await agent.llm.generate(
                messages=messages,
                tools=tools or None,
                system_prompt=system_prompt,
                temperature=agent.temperature,
                tool_choice=agent.tool_choice if tools else None,
            )
            result.turns += 1

            if not response.tool_calls:
                result.content = response.content
                log.info("Agent finished", turns=result.turns, steps=result.steps)
                return result

            calls = response.tool_calls
            if result.turns >= agent.max_turns:
                log.warning("Turn budget exhausted", turns=result.turns)
                raise BudgetExceededError(agent.name, "turn", agent.max_turns)
            if result.steps + len(calls) > agent.max_steps:
                log.warning("Step budget exhausted", steps=result.steps, requested=len(calls))
                raise BudgetExceededError(agent.name, "step", agent.max_steps)

            result.steps += len(calls)
            messages.append(LLMMessage(role="assistant", content=response.content, tool_calls=calls))

            outcomes = await self._execute_calls(agent, calls, message, history, result)
            for call, outcome in zip(calls, outcomes):
                _track_preview(result, outcome)
                messages.append(LLMMessage(
                    role="tool",
                    content=outcome.for_model(),
                    tool_call_id=call.id,
                    name=call.name,
                ))

    async def _execute_calls(
        self,
        agent: AgentDefinition,
        calls: list[ToolCall],
        message: str,
        history: list[HistoryMessage],
        result: AgentResult,
    ) -> list[ToolResult]:
        outcomes: list[ToolResult | None] = [None] * len(calls)
        regular: list[tuple[int, ToolCall]] = []
        delegations: list[tuple[int, ToolCall]] = []

        for index, call in enumerate(calls):
            if agent.handoff is not None and call.name == agent.handoff.name:
                delegations.append((index, call))
            else:
                regular.append((index, call))
                self._progress(f"Running {call.name.replace('_', ' ')}")

        if regular:
            batch = await self.executor.execute_batch([call for _, call in regular], agent.toolset)
            for (index, _), outcome in zip(regular, batch):
                outcomes[index] = outcome
                result.tool_results.append(outcome)

        for index, call in delegations:
            outcomes[index] = await self._delegate(agent, call, message, history, result)

        return [o for o in outcomes if o is not None]

    async def _delegate(
        self,
        agent: AgentDefinition,
        call: ToolCall,
        message: str,
        history: list[HistoryMessage],
        result: AgentResult,
    ) -> ToolResult:
        """Run a delegate specialist as a bounded sub-run."""
        try:
            request = agent.handoff.parse(call.arguments)
        except ValidationError as e:
            return ToolResult(
                success=False,
                error=e.user_message,
                kind="error",
                tool_name=call.name,
                arguments=call.arguments,
            )

        delegate = self.agents[request.target]
        question = request.instruction or message
        self._progress(f"Asking the {delegate.name} agent: {question}")
        logger.info("Delegating", agent=agent.name, target=delegate.name)

        sub = await self.run_agent(delegate, question, history)
        result.tool_results.extend(sub.tool_results)
        for preview in sub.previews:
            result.previews.append(preview)

        return ToolResult(
            success=True,
            output=sub.content,
            kind="handoff",
            tool_name=call.name,
            arguments=call.arguments,
        )

    def _progress(self, content: str) -> None:
        if self.emitter is not None:
            self.emitter.progress(content)


def _track_preview(result: AgentResult, outcome: ToolResult) -> None:
    """Keep the list of previews still awaiting the user's confirmation."""
    arguments = {k: v for k, v in outcome.arguments.items() if k != "confirmed"}
    entry = {"tool": outcome.tool_name, "arguments": arguments}

    if outcome.kind == "preview" and (outcome.data or {}).get("confirmationRequired"):
        if entry not in result.previews:
            result.previews.append(entry)
    elif outcome.kind == "commit" and entry in result.previews:
        result.previews.remove(entry)
