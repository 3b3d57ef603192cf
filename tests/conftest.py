from __future__ import annotations

from collections.abc import Callable, Sequence

import httpx
import pytest

from app.infra.retry import RetryPolicy
from app.llm.client import ChatMessage, LLMCompletion, LLMUsage
from app.storage.models import ProviderConfig

NO_WAIT_RETRY = RetryPolicy(max_attempts=3, base_delay=0, jitter=False)


class StubLLMFactory:
    """记录调用次数、返回固定内容的 LLM 工厂替身。"""

    def __init__(self, content: str) -> None:
        self.content = content
        self.calls: list[list[ChatMessage]] = []
        self.max_tokens: list[int | None] = []

    async def get_global_default_config(self) -> ProviderConfig:
        return ProviderConfig(id="p1", provider="openai", model="gpt-test", is_default=True)

    async def complete(
        self,
        config: ProviderConfig,
        messages: Sequence[ChatMessage],
        max_tokens: int | None = None,
    ) -> LLMCompletion:
        self.calls.append(list(messages))
        self.max_tokens.append(max_tokens)
        return LLMCompletion(
            content=self.content,
            usage=LLMUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2),
        )


class RecordingTransport:
    """按 (method, path) 路由到固定响应，并记录所有请求。"""

    def __init__(self, routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response] | httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        if callable(route):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return NO_WAIT_RETRY


@pytest.fixture
def stub_llm_factory() -> Callable[[str], StubLLMFactory]:
    return StubLLMFactory


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport
