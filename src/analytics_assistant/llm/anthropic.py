"""
Anthropic Claude LLM provider.
"""

from typing import Any

import anthropic
import structlog

from .base import BaseLLM, LLMMessage, LLMResponse, TokenUsage, ToolCall, ToolChoice, ToolDefinition

logger = structlog.get_logger()

_TOOL_CHOICE = {
    "auto": {"type": "auto"},
    "required": {"type": "any"},
}


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        super().__init__(api_key, model, base_url, max_tokens, timeout, max_retries)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic content blocks.

        All results of one parallel tool turn go back in a single user
        message, in the order the calls were made.
        """
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                result = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                if msg.content.startswith("Error: "):
                    result["is_error"] = True
                if converted and _is_tool_result_turn(converted[-1]):
                    converted[-1]["content"].append(result)
                else:
                    converted.append({"role": "user", "content": [result]})
                continue

            if msg.role == "assistant" and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                blocks.extend(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                    for call in msg.tool_calls
                )
                converted.append({"role": "assistant", "content": blocks})
                continue

            converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            for tool in tools
        ]

    def _convert_tool_choice(self, tool_choice: ToolChoice) -> dict[str, Any]:
        return _TOOL_CHOICE.get(tool_choice, {"type": "tool", "name": tool_choice})

    def _parse_response(self, response: Any) -> LLMResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                arguments = block.input if isinstance(block.input, dict) else {}
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(arguments)))

        return LLMResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            usage=TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            model=response.model,
            stop_reason=response.stop_reason,
        )

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        tool_choice: ToolChoice | None = None,
    ) -> LLMResponse:
        """Generate a response from Claude."""
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(messages),
        }
        if system_prompt:
            request["system"] = system_prompt
        if temperature is not None:
            request["temperature"] = temperature
        if tools:
            request["tools"] = self._convert_tools(tools)
            if tool_choice:
                request["tool_choice"] = self._convert_tool_choice(tool_choice)

        try:
            raw = await self.client.messages.create(**request)
        except anthropic.APIStatusError as e:
            logger.error("Anthropic API error", status=e.status_code, model=self.model, error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error("Anthropic request failed", model=self.model, error=str(e))
            raise

        response = self._parse_response(raw)
        self._log_response(response)
        return response

    async def aclose(self) -> None:
        await self.client.close()


def _is_tool_result_turn(message: dict[str, Any]) -> bool:
    content = message.get("content")
    return (
        message.get("role") == "user"
        and isinstance(content, list)
        and bool(content)
        and content[0].get("type") == "tool_result"
    )
