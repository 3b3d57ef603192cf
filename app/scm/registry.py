"""
Adapter 注册表（进程级单例）。

- 按平台持有 adapter 实例
- 第一次处理 webhook 时按 git_configs 惰性初始化；失败只记日志，下次请求再试
- 并发请求同时触发初始化时会重复初始化，结果一致，不加锁
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from app.scm.base import BasePlatformAdapter
from app.scm.models import Platform
from app.storage.base import ConfigStore

logger = logging.getLogger(__name__)


class AdapterRegistry:
    def __init__(self, adapters: Mapping[Platform, BasePlatformAdapter], config_store: ConfigStore) -> None:
        self._adapters = dict(adapters)
        self._config_store = config_store
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get(self, platform: Platform) -> BasePlatformAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise KeyError(f"No adapter registered for platform: {platform.value}")
        return adapter

    async def ensure_initialized(self) -> None:
        if self._initialized:
            return
        try:
            credentials = await self._config_store.list_git_credentials()
        except Exception as exc:
            logger.error(f"Failed to load git credentials, adapters stay uninitialized: {exc}")
            return

        for credential in credentials:
            adapter = self._adapters.get(credential.provider)
            if adapter is None:
                logger.warning(f"No adapter for git config provider {credential.provider.value}, skipping")
                continue
            await adapter.initialize(credential.url, credential.token)
        self._initialized = True
        logger.info(f"Adapter registry initialized with {len(credentials)} git config(s)")

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
