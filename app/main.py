"""
FastAPI 服务入口。

这里做三件事：
- 加载配置（严格校验环境变量）并配置日志
- 组装外部依赖（存储 / 平台 adapter / LLM 工厂 / 通知）
- 装配路由（health + webhook）与异常映射

注意：
- 业务流程不写在这里（由 `review/orchestrator.py` 负责）
- `httpx.AsyncClient` 会被复用（LLM 与通知共用连接池）；平台 adapter 各自持有带 base_url 的 client
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

import anyio
import httpx
from fastapi import FastAPI

from app.config import AppConfig, load_config_from_env
from app.gitea.client import GiteaAdapter
from app.github.client import GitHubAdapter
from app.gitlab.client import GitLabAdapter
from app.llm.factory import LLMFactory
from app.notification.dispatcher import NotificationDispatcher
from app.review.orchestrator import WebhookOrchestrator
from app.review.reviewer import CodeReviewer
from app.scm.models import Platform
from app.scm.registry import AdapterRegistry
from app.storage.base import ConfigStore, ReviewLogSink
from app.storage.memory import InMemoryConfigStore, InMemoryReviewLogSink
from app.storage.pg import PgConfigStore, PgReviewLogSink, PgStorageClient, ensure_schema
from app.webhook.router import build_webhook_router, install_exception_handlers

logger = logging.getLogger(__name__)


def build_stores(config: AppConfig) -> tuple[ConfigStore, ReviewLogSink, PgStorageClient | None]:
    """有 DATABASE_URL 用 Postgres，否则用环境变量播种的内存存储。"""
    if config.database_url:
        client = PgStorageClient(dsn=config.database_url)
        return PgConfigStore(client), PgReviewLogSink(client), client
    store = InMemoryConfigStore(git_credentials=config.git_credentials(), providers=config.provider_configs())
    return store, InMemoryReviewLogSink(), None


def build_app(environ: Mapping[str, str] | None = None) -> FastAPI:
    """创建并返回 FastAPI app（便于测试/复用）。"""

    # 1) 配置：缺失会直接抛错，启动失败（这是期望行为）
    config = load_config_from_env(os.environ if environ is None else environ)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 2) 可复用的 HTTP client：供 LLM 与 IM 通知使用
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    config_store, review_sink, pg_client = build_stores(config)

    adapter_options = {"retry_policy": config.retry, "supported_extensions": config.supported_extensions}
    registry = AdapterRegistry(
        adapters={
            Platform.GITLAB: GitLabAdapter(**adapter_options),
            Platform.GITHUB: GitHubAdapter(**adapter_options),
            Platform.GITEA: GiteaAdapter(**adapter_options),
        },
        config_store=config_store,
    )

    # 3) 审查引擎：LLM 工厂按全局默认 provider 取 client
    llm_factory = LLMFactory(config_store=config_store, http_client=http_client)
    orchestrator = WebhookOrchestrator(
        adapters=registry,
        config_store=config_store,
        review_sink=review_sink,
        reviewer=CodeReviewer(llm_factory=llm_factory),
        notifier=NotificationDispatcher(http_client=http_client),
        webhook_secrets=config.webhook_secrets(),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if pg_client is not None:
            await anyio.to_thread.run_sync(ensure_schema, pg_client)
        yield
        await registry.aclose()
        await http_client.aclose()

    app = FastAPI(title="AI Code Review", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """健康检查：用于 k8s / LB 探活。"""
        return {"status": "ok"}

    app.include_router(build_webhook_router(orchestrator=orchestrator, signing_secrets=config.webhook_secrets()))
    install_exception_handlers(app)
    logger.info(f"App built: platforms={[p.value for p in config.platform_configs()]}, database={bool(pg_client)}")
    return app


# Uvicorn 默认会从模块级变量 `app` 读取 ASGI 应用
app = build_app()
