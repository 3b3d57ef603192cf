"""
Webhook 来源平台识别。

顺序：
- event header（最可靠）
- token header
- payload 形状（object_kind -> GitLab；pull_request 或 ref+commits -> GitHub；action -> Gitea）
- 兜底 GitHub（记日志）

Gitea 为兼容会同时带上 `X-GitHub-Event`，所以 header 检查时 Gitea 排在 GitHub 之前。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.scm.models import Platform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformHeaders:
    event: str
    token: str


PLATFORM_HEADERS: dict[Platform, PlatformHeaders] = {
    Platform.GITLAB: PlatformHeaders(event="x-gitlab-event", token="x-gitlab-token"),
    Platform.GITEA: PlatformHeaders(event="x-gitea-event", token="x-gitea-token"),
    Platform.GITHUB: PlatformHeaders(event="x-github-event", token="x-github-token"),
}


def _header(headers: Mapping[str, str], name: str) -> str:
    return headers.get(name) or headers.get(name.title()) or ""


def get_event_header(headers: Mapping[str, str], platform: Platform) -> str:
    return _header(headers, PLATFORM_HEADERS[platform].event)


def get_token_header(headers: Mapping[str, str], platform: Platform) -> str:
    return _header(headers, PLATFORM_HEADERS[platform].token)


def detect_platform(headers: Mapping[str, str], payload: Any) -> Platform:
    for platform in PLATFORM_HEADERS:
        if get_event_header(headers, platform):
            logger.info(f"Detected {platform.value} from event header")
            return platform

    for platform in PLATFORM_HEADERS:
        if get_token_header(headers, platform):
            logger.info(f"Detected {platform.value} from token header")
            return platform

    data = payload[0] if isinstance(payload, list) and payload else payload
    if isinstance(data, dict):
        if "object_kind" in data:
            logger.info("Detected gitlab from payload object_kind")
            return Platform.GITLAB
        if "pull_request" in data or ("ref" in data and "commits" in data):
            logger.info("Detected github from payload shape")
            return Platform.GITHUB
        if "action" in data:
            logger.info("Detected gitea from payload action")
            return Platform.GITEA

    logger.warning("Could not detect webhook platform, defaulting to github")
    return Platform.GITHUB
