"""
平台 Adapter 抽象基类（外部系统连接器）。

约定：
- 子类只负责"URL/鉴权头/payload 形状/响应形状"的差异
- HTTP 调用、错误处理、重试、push diff 的基准提交解析、分支保护匹配都在这里统一实现
- 出错抛 `TransportError`，不要吞异常（便于上游统一处理/告警）
- adapter 是进程级单例：请求相关的仓库信息全部从 `WebhookEvent` 传入
"""

from __future__ import annotations

import hmac
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

import httpx

from app.errors import TransportError
from app.infra.retry import RetryPolicy, retry_with_backoff
from app.scm.filtering import DEFAULT_EXTENSIONS, filter_changes
from app.scm.models import CodeChange, Commit, Platform, WebhookEvent

logger = logging.getLogger(__name__)


def is_zero_sha(sha: str | None) -> bool:
    """push payload 里用全 0 的 SHA 表示"分支不存在"（新建/删除分支）。"""
    return bool(sha) and set(sha) == {"0"}


def match_wildcard(pattern: str, name: str) -> bool:
    """分支保护通配：`*` 匹配任意串，`?` 匹配单个字符，其余字符按字面匹配。"""
    regex = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.fullmatch(regex, name) is not None


class BasePlatformAdapter(ABC):
    platform: ClassVar[Platform]
    display_name: ClassVar[str]

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy | None = None,
        supported_extensions: Sequence[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        - retry_policy: 读接口的重试策略（默认 3 次，指数退避）
        - supported_extensions: 变更过滤的扩展名白名单
        - transport: 注入 httpx transport（测试里用 `httpx.MockTransport`）
        """
        self._retry_policy = retry_policy or RetryPolicy()
        self._supported_extensions = tuple(supported_extensions or DEFAULT_EXTENSIONS)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._access_token = ""

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self, base_url: str, access_token: str) -> None:
        """（重新）配置 API 地址与访问令牌；重复调用会替换掉旧的连接。"""
        if self._client is not None:
            await self._client.aclose()
        self._access_token = access_token
        self._client = httpx.AsyncClient(
            base_url=self._api_base_url(base_url.rstrip("/")),
            headers=self._auth_headers(access_token),
            timeout=httpx.Timeout(30.0),
            transport=self._transport,
        )
        logger.info(f"{self.display_name} adapter initialized: {base_url}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    def _api_base_url(self, base_url: str) -> str: ...

    @abstractmethod
    def _auth_headers(self, access_token: str) -> dict[str, str]: ...

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        if self._client is None:
            raise TransportError(f"{self.display_name} adapter is not initialized")
        logger.debug(f"[{self.display_name}] {method} {path} params={dict(params or {})}")
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"{self.display_name} API request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(
                f"{self.display_name} API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    async def _with_retry(self, label: str, fn: Any) -> Any:
        return await retry_with_backoff(fn, policy=self._retry_policy, label=f"[{self.display_name}] {label}")

    # ---- webhook ----

    def verify_token(self, token: str, secret: str) -> bool:
        """常量时间比较 webhook token 与配置的 secret。"""
        if not token or not secret:
            return False
        return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))

    @abstractmethod
    def parse_event(self, payload: Any) -> WebhookEvent:
        """把原始 payload 归一化为 `WebhookEvent`；无法识别时抛 `UnsupportedEventError`。"""

    # ---- merge request / pull request ----

    @abstractmethod
    async def get_merge_request_changes(self, event: WebhookEvent, mr_id: int) -> list[CodeChange]: ...

    @abstractmethod
    async def get_merge_request_commits(self, event: WebhookEvent, mr_id: int) -> list[Commit]: ...

    @abstractmethod
    async def add_merge_request_note(self, event: WebhookEvent, mr_id: int, body: str) -> None: ...

    # ---- push ----

    @abstractmethod
    async def get_push_commits(self, event: WebhookEvent, branch: str) -> list[Commit]: ...

    @abstractmethod
    async def add_push_comment(self, event: WebhookEvent, commit_id: str, body: str) -> None: ...

    @abstractmethod
    async def _compare(self, event: WebhookEvent, base: str, head: str) -> list[CodeChange]: ...

    @abstractmethod
    async def _fetch_parent_commit_id(self, event: WebhookEvent, sha: str) -> str: ...

    @abstractmethod
    async def _list_protected_branch_patterns(self, event: WebhookEvent) -> list[str]: ...

    async def get_parent_commit_id(self, event: WebhookEvent, sha: str) -> str:
        """父提交 id；查询失败或根提交时返回空串。"""
        try:
            return await self._fetch_parent_commit_id(event, sha)
        except TransportError as exc:
            logger.warning(f"[{self.display_name}] failed to get parent of {sha}: {exc}")
            return ""

    async def get_push_changes(self, event: WebhookEvent, before: str, after: str) -> list[CodeChange]:
        """
        获取一次 push 的 diff。

        - 删除分支：直接返回空列表（不发任何请求）
        - `before` 为空或全 0（新建分支）：以第一个提交的父提交为基准
        - 基准或 `after` 仍为空：告警并返回空列表
        """
        if event.deleted or is_zero_sha(after):
            logger.info(f"[{self.display_name}] branch {event.branch} deleted, no changes to review")
            return []

        base = before if before and not is_zero_sha(before) else ""
        if not base:
            first_commit = event.commits[0].id if event.commits else after
            base = await self.get_parent_commit_id(event, first_commit)

        if not base or not after:
            logger.warning(f"[{self.display_name}] cannot resolve push range base={base!r} after={after!r}")
            return []

        return await self._with_retry(f"compare {base[:8]}...{after[:8]}", lambda: self._compare(event, base, after))

    async def is_branch_protected(self, event: WebhookEvent, branch: str) -> bool:
        patterns = await self._list_protected_branch_patterns(event)
        return any(match_wildcard(pattern, branch) for pattern in patterns)

    def filter_changes(self, changes: Sequence[CodeChange], extensions: Sequence[str] | None = None) -> list[CodeChange]:
        return filter_changes(changes, extensions if extensions is not None else self._supported_extensions)
