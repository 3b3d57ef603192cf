from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from app.errors import NoProviderAvailableError
from app.scm.models import Platform


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(BaseModel):
    id: str
    name: str
    platform: Platform
    repository_url: str = ""
    webhook_url: str | None = None
    webhook_type: Literal["dingtalk", "feishu"] | None = None
    webhook_secret: str | None = None
    is_enabled: bool = True
    auto_review_enabled: bool = True
    review_config_id: str | None = None


class GitCredential(BaseModel):
    provider: Platform
    url: str
    token: str
    name: str = ""


class ProviderConfig(BaseModel):
    """LLM provider 配置（OpenAI-compatible 接入）。"""

    id: str
    provider: Literal["openai", "anthropic", "deepseek", "zhipuai", "qwen", "ollama"] = "openai"
    name: str = ""
    api_key: str = ""
    base_url: str | None = None
    model: str
    max_tokens: int | None = None
    temperature: float = 0.7
    is_default: bool = False
    is_enabled: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class ReviewLogRecord(BaseModel):
    review_type: Literal["mr", "push"]
    project_id: str | None = None
    project_name: str
    author: str = ""
    source_branch: str | None = None
    target_branch: str | None = None
    branch: str | None = None
    score: int
    review_result: dict[str, Any] = Field(default_factory=dict)
    url: str | None = None
    last_commit_id: str = ""
    additions: int = 0
    deletions: int = 0
    commit_messages: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


def extract_project_path(identifier: str) -> str:
    """`https://host/group/repo(.git)` -> `group/repo`；非 URL 原样返回（去掉首尾 `/`）。"""
    value = identifier.strip()
    if "://" in value:
        value = urlparse(value).path
    value = value.strip("/")
    return value.removesuffix(".git")


def find_matching_project(projects: Iterable[Project], identifier: str, platform: Platform) -> Project | None:
    """
    按仓库标识查找项目。

    匹配顺序：
    - 名称 + 平台精确匹配（URL 先归约为路径）
    - repository_url 完全相等
    - 同平台下 repository_url 的路径以该标识结尾
    """
    candidates = list(projects)
    path = extract_project_path(identifier)
    for project in candidates:
        if project.platform == platform and project.name in (identifier, path):
            return project
    for project in candidates:
        if project.repository_url and project.repository_url == identifier:
            return project
    if not path:
        return None
    for project in candidates:
        if project.platform != platform or not project.repository_url:
            continue
        repo_path = extract_project_path(project.repository_url)
        if repo_path == path or repo_path.endswith(f"/{path}"):
            return project
    return None


def select_default_provider(configs: Iterable[ProviderConfig]) -> ProviderConfig:
    """优先 is_default 且 enabled；否则第一个 enabled；按 created_at 升序。"""
    enabled = sorted((c for c in configs if c.is_enabled), key=lambda c: c.created_at)
    for config in enabled:
        if config.is_default:
            return config
    if enabled:
        return enabled[0]
    raise NoProviderAvailableError("No available LLM config found")
