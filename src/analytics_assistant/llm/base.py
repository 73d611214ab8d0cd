"""
Base classes for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

logger = structlog.get_logger()

# "auto", "required", or the name of a single tool the model must call
ToolChoice = str


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMResponse:
    """One model turn: text, requested tool calls and token usage."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    stop_reason: str | None = None


class BaseLLM(ABC):
    """Base class for LLM providers.

    One instance is shared by every run in the process, so nothing about a
    single request is ever stored on it.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        tool_choice: ToolChoice | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM.

        Temperature is passed per call so agents sharing a client can each
        use their own without mutating shared state.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    def _log_response(self, response: LLMResponse) -> None:
        logger.debug(
            "Model call finished",
            provider=self.provider_name,
            model=response.model or self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            tool_calls=len(response.tool_calls),
            stop_reason=response.stop_reason,
        )
