from __future__ import annotations

import pytest

from app.config import load_config_from_env
from app.scm.filtering import DEFAULT_EXTENSIONS
from app.scm.models import Platform

LLM_ENV = {"LLM_BASE_URL": "https://llm.example.com", "LLM_API_KEY": "k", "LLM_MODEL": "m"}


def test_load_config_requires_llm() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ={})


def test_load_config_requires_at_least_one_scm() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(environ=dict(LLM_ENV))


def test_load_config_gitlab_only_ok() -> None:
    environ = {
        **LLM_ENV,
        "GITLAB_BASE_URL": "https://gitlab.example.com",
        "GITLAB_TOKEN": "t",
        "GITLAB_WEBHOOK_SECRET": "s",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.gitlab is not None
    assert cfg.github is None
    assert cfg.gitea is None
    assert cfg.webhook_secrets() == {Platform.GITLAB: "s"}
    assert cfg.supported_extensions == DEFAULT_EXTENSIONS


def test_load_config_github_only_ok() -> None:
    environ = {
        **LLM_ENV,
        "GITHUB_API_BASE_URL": "https://api.github.com",
        "GITHUB_TOKEN": "t",
        "GITHUB_WEBHOOK_SECRET": "s",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.gitlab is None
    assert cfg.github is not None
    credentials = cfg.git_credentials()
    assert [c.provider for c in credentials] == [Platform.GITHUB]
    assert credentials[0].url == "https://api.github.com"


def test_load_config_webhook_secret_is_optional() -> None:
    environ = {**LLM_ENV, "GITLAB_BASE_URL": "https://gitlab.example.com", "GITLAB_TOKEN": "t"}
    cfg = load_config_from_env(environ=environ)
    assert cfg.gitlab is not None
    assert cfg.gitlab.webhook_secret == ""
    assert cfg.webhook_secrets() == {}


def test_load_config_rejects_partial_gitlab() -> None:
    environ = {**LLM_ENV, "GITLAB_BASE_URL": "https://gitlab.example.com", "GITLAB_WEBHOOK_SECRET": "s"}
    with pytest.raises(ValueError, match="GITLAB_TOKEN"):
        load_config_from_env(environ=environ)


def test_load_config_rejects_partial_gitea() -> None:
    environ = {**LLM_ENV, "GITEA_BASE_URL": "https://gitea.example.com", "GITEA_WEBHOOK_SECRET": "s"}
    with pytest.raises(ValueError):
        load_config_from_env(environ=environ)


def test_load_config_with_database_needs_no_llm_or_scm() -> None:
    cfg = load_config_from_env(environ={"DATABASE_URL": "postgresql://localhost/review"})
    assert cfg.database_url == "postgresql://localhost/review"
    assert cfg.llm is None
    assert cfg.provider_configs() == []


def test_load_config_reads_optional_settings() -> None:
    environ = {
        **LLM_ENV,
        "LLM_PROVIDER": "deepseek",
        "LLM_MAX_TOKENS": "12000",
        "GITEA_BASE_URL": "https://gitea.example.com",
        "GITEA_TOKEN": "t",
        "GITEA_WEBHOOK_SECRET": "s",
        "SUPPORTED_EXTENSIONS": ".py, go",
        "LOG_LEVEL": "debug",
        "RETRY_MAX_ATTEMPTS": "5",
        "RETRY_BACKOFF_MULTIPLIER": "1",
    }
    cfg = load_config_from_env(environ=environ)
    assert cfg.supported_extensions == (".py", ".go")
    assert cfg.log_level == "DEBUG"
    assert cfg.retry.max_attempts == 5
    assert cfg.retry.multiplier == 1.0
    provider = cfg.provider_configs()[0]
    assert provider.provider == "deepseek"
    assert provider.max_tokens == 12000
    assert provider.is_default


def test_load_config_rejects_unknown_llm_provider() -> None:
    with pytest.raises(ValueError):
        load_config_from_env(
            environ={
                **LLM_ENV,
                "LLM_PROVIDER": "unknown",
                "GITLAB_BASE_URL": "https://gitlab.example.com",
                "GITLAB_TOKEN": "t",
                "GITLAB_WEBHOOK_SECRET": "s",
            }
        )
