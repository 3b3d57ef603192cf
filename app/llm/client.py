"""
LLM Client（基于 OpenAI SDK，对接任意 OpenAI-compatible 端点）。

目标：
- **尽量薄**：只做协议适配与错误处理
- **统一接口**：OpenAI / DeepSeek / 智谱 / 通义 / Ollama / LiteLLM Proxy 都走 OpenAI-compatible API
- **不设超时**：单次审查的等待上限交给上游（调用方/网关）控制
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

import httpx
from openai import NOT_GIVEN, AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from app.review.tokens import count_tokens

logger = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r"/v\d+[a-z0-9]*$")


class ChatMessage(BaseModel):
    """OpenAI chat message 的最小结构。"""

    role: str
    content: str


class LLMUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated: bool = False


class LLMCompletion(BaseModel):
    content: str
    usage: LLMUsage


def _normalize_base_url(base_url: str) -> str:
    """没有 `/vN` 版本后缀时补 `/v1`（智谱的 `/v4` 等保持不变）。"""
    normalized = base_url.rstrip("/")
    if _VERSION_SUFFIX.search(normalized):
        return normalized
    return f"{normalized}/v1"


class OpenAICompatLLMClient:
    def __init__(self, api_key: str, base_url: str, http_client: httpx.AsyncClient, model: str) -> None:
        """
        - api_key: LLM API key（Ollama 等本地端点可为任意非空串）
        - base_url: OpenAI-compatible base URL
        - http_client: 复用 httpx.AsyncClient 连接池
        - model: 模型名
        """
        self._base_url = _normalize_base_url(base_url=base_url)
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key or "unused", base_url=self._base_url, http_client=http_client)

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMCompletion:
        """
        调用 chat completion 并返回文本 + token 用量。

        注意：
        - 出错直接抛异常，便于上游统一处理/告警
        - 端点没返回 usage 时用本地估算补上
        """
        try:
            logger.info(f"LLM request: model={self._model}, messages={len(messages)} msg(s), max_tokens={max_tokens}")
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[m.model_dump() for m in messages],
                max_tokens=max_tokens if max_tokens is not None else NOT_GIVEN,
                temperature=temperature if temperature is not None else NOT_GIVEN,
            )
        except OpenAIError as exc:
            logger.error(f"LLM API error: {exc}")
            raise
        except httpx.HTTPError as exc:
            logger.error(f"LLM HTTP error: {exc}")
            raise

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned None content")
            raise RuntimeError("LLM returned None content")

        if response.usage is not None:
            usage = LLMUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        else:
            prompt_tokens = sum(count_tokens(m.content) for m in messages)
            completion_tokens = count_tokens(content)
            usage = LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                estimated=True,
            )

        logger.info(f"LLM response: {len(content)} chars, total_tokens={usage.total_tokens}")
        return LLMCompletion(content=str(content), usage=usage)
