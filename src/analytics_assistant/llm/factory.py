"""
LLM factory and process-wide model pool.

Supports: Anthropic Claude, OpenAI GPT, OpenRouter.
"""

import structlog

from ..config import LLMConfig, ModelRef, Settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM

logger = structlog.get_logger()

MODEL_REFS: tuple[ModelRef, ...] = ("router", "specialist", "orchestrator", "orchestrator_max")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openai -> OpenAILLM (native OpenAI SDK)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    options = {
        "api_key": config.api_key,
        "model": config.model,
        "max_tokens": config.max_tokens,
        "timeout": config.timeout_seconds,
        "max_retries": config.max_retries,
    }

    if config.provider == "anthropic":
        return AnthropicLLM(base_url=config.base_url, **options)
    elif config.provider == "openai":
        return OpenAILLM(base_url=config.base_url, **options)
    elif config.provider == "openrouter":
        return OpenAILLM(base_url=config.base_url or OPENROUTER_BASE_URL, **options)
    else:
        raise ValueError(f"Unknown LLM provider: {config.provider}")


class ModelPool:
    """Model clients created once per process and shared by every run.

    References that resolve to the same provider and model share a client.
    """

    def __init__(self, models: dict[str, BaseLLM]):
        self._models = models

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelPool":
        clients: dict[tuple[str, str], BaseLLM] = {}
        models: dict[str, BaseLLM] = {}

        for ref in MODEL_REFS:
            config = settings.get_llm_config(ref)
            key = (config.provider, config.model)
            if key not in clients:
                clients[key] = create_llm(config)
            models[ref] = clients[key]

        logger.info(
            "Model pool initialized",
            provider=settings.default_provider,
            clients=len(clients),
        )
        return cls(models)

    def get(self, ref: str) -> BaseLLM:
        try:
            return self._models[ref]
        except KeyError:
            raise ValueError(f"Unknown model reference: {ref}") from None

    async def aclose(self) -> None:
        closed: set[int] = set()
        for llm in self._models.values():
            if id(llm) in closed:
                continue
            closed.add(id(llm))
            await llm.aclose()
