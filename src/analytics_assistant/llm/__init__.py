"""
LLM module for multi-provider AI model support.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- OpenRouter (via OpenAI-compatible endpoint)
"""

from .base import BaseLLM, LLMMessage, LLMResponse, TokenUsage, ToolCall, ToolChoice, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import ModelPool, create_llm

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "TokenUsage",
    "ToolCall",
    "ToolChoice",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "ModelPool",
    "create_llm",
]
