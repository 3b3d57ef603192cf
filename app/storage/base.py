"""
存储接口协议（依赖倒置：方便替换 Postgres / Memory）。

- `ConfigStore`：只读的配置实体（项目、审查配置、平台凭据、LLM provider）
- `ReviewLogSink`：审查记录的追加与幂等查询
"""

from __future__ import annotations

from typing import Protocol

from app.review.models import ReviewConfig
from app.scm.models import Platform
from app.storage.models import GitCredential, Project, ProviderConfig, ReviewLogRecord


class ConfigStore(Protocol):
    async def find_project_by_repo_identifier(self, identifier: str, platform: Platform) -> Project | None: ...

    async def get_review_config_by_id(self, config_id: str) -> ReviewConfig | None: ...

    async def get_default_review_config(self) -> ReviewConfig | None: ...

    async def list_git_credentials(self) -> list[GitCredential]: ...

    async def get_default_llm_provider(self) -> ProviderConfig: ...


class ReviewLogSink(Protocol):
    async def append_review_log(self, record: ReviewLogRecord) -> bool:
        """写入一条记录；与已有记录冲突（同类型/项目/提交）时返回 False。"""
        ...

    async def exists_review_log(self, project_name: str, commit_id: str, review_type: str) -> bool: ...
