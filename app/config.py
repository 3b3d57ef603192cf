"""
应用配置加载。

设计目标：
- **严格**：配置不完整就直接报错（避免"看起来跑了其实没配置好"）
- **类型安全**：使用 Pydantic 校验 URL/数字等，减少运行时踩坑
- **可测试**：核心加载函数接收 `environ` 显式输入，便于单元测试

两种运行方式：
- 配了 `DATABASE_URL`：项目/平台凭据/LLM provider 都从 Postgres 读
- 没配：LLM 配置 + 至少一个平台配置必须来自环境变量，用内存存储
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, HttpUrl

from app.infra.retry import RetryPolicy
from app.scm.filtering import DEFAULT_EXTENSIONS, parse_extensions
from app.scm.models import Platform
from app.storage.models import GitCredential, ProviderConfig

LLMProvider = Literal["openai", "anthropic", "deepseek", "zhipuai", "qwen", "ollama"]

_PLATFORM_ENV_KEYS: dict[Platform, tuple[str, str]] = {
    Platform.GITLAB: ("GITLAB_BASE_URL", "GITLAB_TOKEN"),
    Platform.GITHUB: ("GITHUB_API_BASE_URL", "GITHUB_TOKEN"),
    Platform.GITEA: ("GITEA_BASE_URL", "GITEA_TOKEN"),
}
# 可选：没配置时不做 token / 签名校验
_PLATFORM_SECRET_ENV_KEYS: dict[Platform, str] = {
    Platform.GITLAB: "GITLAB_WEBHOOK_SECRET",
    Platform.GITHUB: "GITHUB_WEBHOOK_SECRET",
    Platform.GITEA: "GITEA_WEBHOOK_SECRET",
}
_LLM_ENV_KEYS: tuple[str, ...] = ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL")


class PlatformConfig(BaseModel):
    """单个代码托管平台的接入配置。"""

    base_url: HttpUrl
    token: str
    webhook_secret: str = ""


class LLMConfig(BaseModel):
    provider: LLMProvider = "openai"
    base_url: HttpUrl
    api_key: str
    model: str
    max_tokens: int = 4000


class AppConfig(BaseModel):
    database_url: str | None = None
    log_level: str = "INFO"
    supported_extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    gitlab: PlatformConfig | None = None
    github: PlatformConfig | None = None
    gitea: PlatformConfig | None = None
    llm: LLMConfig | None = None
    retry: RetryPolicy = RetryPolicy()

    def platform_configs(self) -> dict[Platform, PlatformConfig]:
        configs = {Platform.GITLAB: self.gitlab, Platform.GITHUB: self.github, Platform.GITEA: self.gitea}
        return {platform: cfg for platform, cfg in configs.items() if cfg is not None}

    def webhook_secrets(self) -> dict[Platform, str]:
        return {platform: cfg.webhook_secret for platform, cfg in self.platform_configs().items() if cfg.webhook_secret}

    def git_credentials(self) -> list[GitCredential]:
        """内存存储用：把环境变量里的平台配置转成 git_configs 记录。"""
        return [
            GitCredential(provider=platform, url=str(cfg.base_url).rstrip("/"), token=cfg.token, name="env")
            for platform, cfg in self.platform_configs().items()
        ]

    def provider_configs(self) -> list[ProviderConfig]:
        if self.llm is None:
            return []
        return [
            ProviderConfig(
                id="env",
                provider=self.llm.provider,
                name="env",
                api_key=self.llm.api_key,
                base_url=str(self.llm.base_url).rstrip("/"),
                model=self.llm.model,
                max_tokens=self.llm.max_tokens,
                is_default=True,
            )
        ]


def _missing(environ: Mapping[str, str], keys: tuple[str, ...]) -> list[str]:
    return [key for key in keys if key not in environ or not environ[key]]


def _load_platform(environ: Mapping[str, str], platform: Platform) -> PlatformConfig | None:
    keys = _PLATFORM_ENV_KEYS[platform]
    missing = _missing(environ, keys)
    if len(missing) == len(keys):
        return None
    if missing:
        raise ValueError(f"Incomplete {platform.value} config, missing env vars: {', '.join(missing)}")
    base_url_key, token_key = keys
    return PlatformConfig(
        base_url=environ[base_url_key],
        token=environ[token_key],
        webhook_secret=environ.get(_PLATFORM_SECRET_ENV_KEYS[platform]) or "",
    )


def _load_llm(environ: Mapping[str, str]) -> LLMConfig | None:
    missing = _missing(environ, _LLM_ENV_KEYS)
    if len(missing) == len(_LLM_ENV_KEYS):
        return None
    if missing:
        raise ValueError(f"Incomplete LLM config, missing env vars: {', '.join(missing)}")
    return LLMConfig(
        provider=environ.get("LLM_PROVIDER") or "openai",
        base_url=environ["LLM_BASE_URL"],
        api_key=environ["LLM_API_KEY"],
        model=environ["LLM_MODEL"],
        max_tokens=environ.get("LLM_MAX_TOKENS") or 4000,
    )


def load_config_from_env(environ: Mapping[str, str]) -> AppConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`AppConfig`
    - **失败**：缺失/不完整/非法则抛 `ValueError`（pydantic 的 ValidationError 也是 ValueError）
    """

    database_url = environ.get("DATABASE_URL") or None
    llm = _load_llm(environ)
    platforms = {platform: _load_platform(environ, platform) for platform in Platform}

    if database_url is None:
        if llm is None:
            raise ValueError(f"Missing required env vars: {', '.join(_LLM_ENV_KEYS)}")
        if all(cfg is None for cfg in platforms.values()):
            raise ValueError("At least one of GitLab / GitHub / Gitea must be configured")

    retry_defaults = RetryPolicy()
    retry = RetryPolicy(
        max_attempts=environ.get("RETRY_MAX_ATTEMPTS") or retry_defaults.max_attempts,
        base_delay=environ.get("RETRY_BASE_DELAY_SECONDS") or retry_defaults.base_delay,
        multiplier=environ.get("RETRY_BACKOFF_MULTIPLIER") or retry_defaults.multiplier,
    )

    raw_extensions = environ.get("SUPPORTED_EXTENSIONS")
    return AppConfig(
        database_url=database_url,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        supported_extensions=parse_extensions(raw_extensions) if raw_extensions else DEFAULT_EXTENSIONS,
        gitlab=platforms[Platform.GITLAB],
        github=platforms[Platform.GITHUB],
        gitea=platforms[Platform.GITEA],
        llm=llm,
        retry=retry,
    )
