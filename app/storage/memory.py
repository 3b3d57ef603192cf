"""
内存版存储实现。

用途：
- 本地运行（没有 DATABASE_URL 时由环境变量播种）
- 单元测试

说明：不做持久化；审查记录以 (review_type, project_name, last_commit_id) 去重。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.review.models import ReviewConfig
from app.scm.models import Platform
from app.storage.models import GitCredential
from app.storage.models import Project
from app.storage.models import ProviderConfig
from app.storage.models import ReviewLogRecord
from app.storage.models import find_matching_project
from app.storage.models import select_default_provider


@dataclass
class InMemoryConfigStore:
    projects: list[Project] = field(default_factory=list)
    review_configs: list[ReviewConfig] = field(default_factory=list)
    git_credentials: list[GitCredential] = field(default_factory=list)
    providers: list[ProviderConfig] = field(default_factory=list)

    async def find_project_by_repo_identifier(self, identifier: str, platform: Platform) -> Project | None:
        return find_matching_project(self.projects, identifier, platform)

    async def get_review_config_by_id(self, config_id: str) -> ReviewConfig | None:
        return next((c for c in self.review_configs if c.id == config_id), None)

    async def get_default_review_config(self) -> ReviewConfig | None:
        return next((c for c in self.review_configs if c.style == "professional"), None)

    async def list_git_credentials(self) -> list[GitCredential]:
        return list(self.git_credentials)

    async def get_default_llm_provider(self) -> ProviderConfig:
        return select_default_provider(self.providers)


@dataclass
class InMemoryReviewLogSink:
    records: list[ReviewLogRecord] = field(default_factory=list)

    async def append_review_log(self, record: ReviewLogRecord) -> bool:
        if await self.exists_review_log(record.project_name, record.last_commit_id, record.review_type):
            return False
        self.records.append(record)
        return True

    async def exists_review_log(self, project_name: str, commit_id: str, review_type: str) -> bool:
        return any(
            r.project_name == project_name and r.last_commit_id == commit_id and r.review_type == review_type
            for r in self.records
        )
