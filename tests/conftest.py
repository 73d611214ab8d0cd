"""
Shared fakes for the test suite.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from analytics_assistant.backend import BoundBackend
from analytics_assistant.context import CallerIdentity, build_session_context
from analytics_assistant.llm.base import BaseLLM, LLMResponse, ToolCall
from analytics_assistant.tools import ConfirmationLedger, ToolExecutor


class RecordingBackend:
    """Stands in for BackendClient. Records every call.

    ``responses`` maps a procedure to a value, an exception instance (raised),
    a list (one item per call), or a callable taking the payload.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.headers: list[dict[str, str]] = []

    async def call(
        self,
        procedure: str,
        payload: dict[str, Any] | None = None,
        headers: Any = None,
        correlation_id: str | None = None,
    ) -> Any:
        payload = payload or {}
        self.calls.append((procedure, payload))
        self.headers.append(dict(headers or {}))

        response = self.responses.get(procedure)
        if isinstance(response, list):
            response = response.pop(0) if response else None
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(payload)
        return response

    def procedures(self) -> list[str]:
        return [procedure for procedure, _ in self.calls]

    def count(self, procedure: str) -> int:
        return self.procedures().count(procedure)

    async def aclose(self) -> None:
        pass


class GatedBackend(RecordingBackend):
    """Holds a procedure open until the gate is released."""

    def __init__(self, procedure: str, responses=None):
        super().__init__(responses)
        self.procedure = procedure
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def call(self, procedure, payload=None, headers=None, correlation_id=None):
        if procedure == self.procedure:
            self.started.set()
            await self.gate.wait()
        return await super().call(procedure, payload, headers, correlation_id)


class ScriptedLLM(BaseLLM):
    """An LLM that replays canned responses and records what it was asked."""

    def __init__(self, responses: list[LLMResponse] | None = None, name: str = "scripted"):
        super().__init__(api_key="test", model=name)
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        messages,
        tools=None,
        system_prompt=None,
        temperature=None,
        tool_choice=None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "tools": tools,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "tool_choice": tool_choice,
        })
        if not self.responses:
            return LLMResponse(content="Done.")
        return self.responses.pop(0)

    async def aclose(self) -> None:
        pass

    @property
    def provider_name(self) -> str:
        return "scripted"


def text(content: str) -> LLMResponse:
    return LLMResponse(content=content)


def tool_calls(*calls: tuple[str, dict[str, Any]], content: str = "") -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[
            ToolCall(id=f"call_{index}", name=name, arguments=arguments)
            for index, (name, arguments) in enumerate(calls)
        ],
    )


class FakePool:
    """ModelPool stand-in handing out one ScriptedLLM per model reference."""

    def __init__(self, **models: ScriptedLLM):
        self.models = models

    def get(self, ref: str) -> BaseLLM:
        return self.models.setdefault(ref, ScriptedLLM(name=ref))

    async def aclose(self) -> None:
        pass


@pytest.fixture
def ctx():
    return build_session_context(
        tenant_id="org_1",
        resource_id="site_1",
        domain="example.com",
        caller=CallerIdentity(user_id="user_1", email="owner@example.com"),
        conversation_id="conv_1",
        timezone="UTC",
        headers={"Authorization": "Bearer token", "X-Other": "dropped"},
        forwarded_headers=["authorization"],
        now=datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def bound(backend, ctx):
    return BoundBackend(backend, ctx)


@pytest.fixture
def ledger():
    return ConfirmationLedger(ttl_minutes=10)


@pytest.fixture
def executor(ctx, ledger):
    return ToolExecutor(ctx, ledger, read_retry_attempts=1)


@pytest.fixture
def tool_by_name() -> Callable[[list, str], Any]:
    def find(tools: list, name: str):
        return next(tool for tool in tools if tool.name == name)
    return find
