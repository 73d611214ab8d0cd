"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).
"""

import json
from typing import Any

import openai
import structlog

from .base import BaseLLM, LLMMessage, LLMResponse, TokenUsage, ToolCall, ToolChoice, ToolDefinition

logger = structlog.get_logger()


class OpenAILLM(BaseLLM):
    """OpenAI chat completions provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        super().__init__(api_key, model, base_url, max_tokens, timeout, max_retries)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(
        self,
        messages: list[LLMMessage],
        system_prompt: str | None = None,
    ) -> list[dict[str, Any]]:
        """Convert LLMMessages to chat completion messages, system prompt first."""
        converted: list[dict[str, Any]] = []
        if system_prompt:
            converted.append({"role": "system", "content": system_prompt})

        for msg in messages:
            if msg.role == "tool":
                converted.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
            elif msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [_encode_tool_call(call) for call in msg.tool_calls],
                })
            elif msg.role == "system" and system_prompt:
                continue
            else:
                converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {"name": tool.name, "description": tool.description, "parameters": tool.parameters},
            }
            for tool in tools
        ]

    def _convert_tool_choice(self, tool_choice: ToolChoice) -> Any:
        if tool_choice in ("auto", "required"):
            return tool_choice
        return {"type": "function", "function": {"name": tool_choice}}

    def _parse_response(self, response: Any) -> LLMResponse:
        choice = response.choices[0]
        message = choice.message
        usage = response.usage

        return LLMResponse(
            content=message.content or "",
            tool_calls=[_decode_tool_call(tc) for tc in message.tool_calls or []],
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            model=response.model,
            stop_reason=choice.finish_reason,
        )

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        tool_choice: ToolChoice | None = None,
    ) -> LLMResponse:
        """Generate a response through the chat completions API."""
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(messages, system_prompt),
        }
        if temperature is not None:
            request["temperature"] = temperature
        if tools:
            request["tools"] = self._convert_tools(tools)
            if tool_choice:
                request["tool_choice"] = self._convert_tool_choice(tool_choice)

        try:
            raw = await self.client.chat.completions.create(**request)
        except openai.APIStatusError as e:
            logger.error("OpenAI API error", status=e.status_code, model=self.model, error=str(e))
            raise
        except openai.APIError as e:
            logger.error("OpenAI request failed", model=self.model, error=str(e))
            raise

        response = self._parse_response(raw)
        self._log_response(response)
        return response

    async def aclose(self) -> None:
        await self.client.close()


def _encode_tool_call(call: ToolCall) -> dict[str, Any]:
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
    }


def _decode_tool_call(tool_call: Any) -> ToolCall:
    """Build a ToolCall; unparseable arguments become an empty object and fail validation later."""
    raw = tool_call.function.arguments
    try:
        arguments = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        logger.warning("Malformed tool arguments", tool=tool_call.function.name)
        arguments = {}
    if not isinstance(arguments, dict):
        arguments = {}
    return ToolCall(id=tool_call.id, name=tool_call.function.name, arguments=arguments)
