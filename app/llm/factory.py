"""
LLM provider 工厂。

职责：
- 从配置存储中选出全局默认 provider（is_default 且 enabled，否则第一个 enabled）
- 按 `{provider}-{config_id}` 缓存 client（进程生命周期，`clear_cache()` 可清空）
- 按 provider 上限钳制 max_tokens
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from app.llm.client import ChatMessage, LLMCompletion, OpenAICompatLLMClient
from app.storage.base import ConfigStore
from app.storage.models import ProviderConfig

logger = logging.getLogger(__name__)

PROVIDER_MAX_TOKENS_LIMITS: dict[str, int] = {
    "openai": 8192,
    "anthropic": 8192,
    "deepseek": 16000,
    "zhipuai": 8192,
    "qwen": 8192,
    "ollama": 4096,
}

DEFAULT_MAX_TOKENS = 4000

# 各 provider 的 OpenAI-compatible 端点与默认模型
PROVIDER_DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "zhipuai": "https://open.bigmodel.cn/api/paas/v4",
    "qwen": "https://dashscope.aliyuncs.com/compatible-mode/v1",
    "ollama": "http://localhost:11434/v1",
}

PROVIDER_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4",
    "anthropic": "claude-3-5-sonnet-20241022",
    "deepseek": "deepseek-chat",
    "zhipuai": "glm-4",
    "qwen": "qwen-plus",
    "ollama": "llama2",
}


def get_safe_max_tokens(provider: str, configured: int | None) -> int:
    limit = PROVIDER_MAX_TOKENS_LIMITS.get(provider.lower(), 4096)
    requested = configured or DEFAULT_MAX_TOKENS
    if requested > limit:
        logger.warning(f"max_tokens {requested} exceeds {provider} limit {limit}, clamped")
    return min(requested, limit)


class LLMFactory:
    def __init__(self, config_store: ConfigStore, http_client: httpx.AsyncClient) -> None:
        self._config_store = config_store
        self._http_client = http_client
        self._clients: dict[str, OpenAICompatLLMClient] = {}

    async def get_global_default_config(self) -> ProviderConfig:
        """没有可用配置时抛 `NoProviderAvailableError`。"""
        return await self._config_store.get_default_llm_provider()

    def clear_cache(self) -> None:
        self._clients.clear()

    def get_client(self, config: ProviderConfig) -> OpenAICompatLLMClient:
        cache_key = f"{config.provider}-{config.id}"
        client = self._clients.get(cache_key)
        if client is None:
            client = OpenAICompatLLMClient(
                api_key=config.api_key,
                base_url=config.base_url or PROVIDER_DEFAULT_BASE_URLS[config.provider],
                http_client=self._http_client,
                model=config.model or PROVIDER_DEFAULT_MODELS[config.provider],
            )
            self._clients[cache_key] = client
            logger.info(f"Created LLM client for {config.provider}: {client.model}")
        return client

    async def complete(
        self,
        config: ProviderConfig,
        messages: Sequence[ChatMessage],
        max_tokens: int | None = None,
    ) -> LLMCompletion:
        client = self.get_client(config)
        safe_max_tokens = get_safe_max_tokens(config.provider, max_tokens or config.max_tokens)
        return await client.complete(messages, max_tokens=safe_max_tokens, temperature=config.temperature)
