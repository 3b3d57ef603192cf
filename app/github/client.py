"""
GitHub adapter（REST API v3）。

约定：
- 鉴权头 `Authorization: Bearer <token>`，API 地址即配置的 base url（如 https://api.github.com）
- 列表接口有分页；这里会拉取全部条目
- 部分代理/转发会把事件包一层 `payload`（JSON 字符串或对象），解析前先解包
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, ClassVar

from pydantic import ValidationError

from app.errors import TransportError, UnsupportedEventError
from app.github.schemas import GitHubBranch
from app.github.schemas import GitHubCommit
from app.github.schemas import GitHubCompareResult
from app.github.schemas import GitHubFile
from app.github.schemas import GitHubPullRequestWebhookEvent
from app.github.schemas import GitHubPushWebhookEvent
from app.scm.base import BasePlatformAdapter, is_zero_sha
from app.scm.models import CodeChange, Commit, EventAction, EventType, Platform, WebhookEvent

logger = logging.getLogger(__name__)


def _to_code_change(file: GitHubFile) -> CodeChange:
    return CodeChange(
        diff=file.patch or "",
        new_path=file.filename,
        old_path=file.previous_filename,
        additions=file.additions,
        deletions=file.deletions,
        deleted_file=file.status == "removed",
    )


def _to_commit(commit: GitHubCommit) -> Commit:
    author = commit.author.login if commit.author is not None else ""
    if not author and commit.commit.author is not None:
        author = commit.commit.author.name
    return Commit(
        id=commit.sha,
        message=commit.commit.message,
        author=author,
        timestamp=commit.commit.author.date if commit.commit.author is not None else "",
        url=commit.html_url,
    )


class GitHubAdapter(BasePlatformAdapter):
    platform = Platform.GITHUB
    display_name = "GitHub"

    page_size: ClassVar[int] = 100
    page_size_param: ClassVar[str] = "per_page"
    action_map: ClassVar[dict[str, EventAction]] = {
        "opened": EventAction.OPEN,
        "reopened": EventAction.OPEN,
        "edited": EventAction.UPDATE,
        "synchronize": EventAction.SYNCHRONIZE,
        "closed": EventAction.CLOSE,
    }

    def _api_base_url(self, base_url: str) -> str:
        return base_url

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _unwrap_payload(self, payload: Any) -> Any:
        """列表取第一个元素；嵌套的 `payload` 字段（字符串或对象）解包。"""
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            return payload
        inner = payload.get("payload")
        if isinstance(inner, str) and inner.strip().startswith(("{", "[")):
            try:
                return json.loads(inner)
            except json.JSONDecodeError:
                logger.warning(f"{self.display_name} nested payload is not valid JSON, using outer object")
                return payload
        if isinstance(inner, dict):
            return inner
        return payload

    def parse_event(self, payload: Any) -> WebhookEvent:
        data = self._unwrap_payload(payload)
        if not isinstance(data, dict):
            raise UnsupportedEventError(f"{self.display_name} payload must be a JSON object")
        try:
            if data.get("pull_request"):
                return self._parse_pull_request(GitHubPullRequestWebhookEvent.model_validate(data))
            if data.get("ref") and "commits" in data:
                return self._parse_push(GitHubPushWebhookEvent.model_validate(data))
        except ValidationError as exc:
            raise UnsupportedEventError(f"Malformed {self.display_name} payload: {exc}") from exc
        raise UnsupportedEventError(f"Unsupported {self.display_name} event type")

    def _parse_pull_request(self, hook: GitHubPullRequestWebhookEvent) -> WebhookEvent:
        pr = hook.pull_request
        logger.info(f"{self.display_name} PR #{pr.number}: {hook.action} - {hook.repository.full_name}")
        return WebhookEvent(
            platform=self.platform,
            event_type=EventType.PULL_REQUEST,
            action=self.action_map.get(hook.action, EventAction.UPDATE),
            project_id=str(hook.repository.id or ""),
            project_name=hook.repository.full_name,
            project_url=hook.repository.html_url,
            author=pr.user.login,
            url=pr.html_url,
            source_branch=pr.head.ref,
            target_branch=pr.base.ref,
            mr_id=pr.number,
            is_draft=pr.draft,
            last_commit_id=pr.head.sha,
        )

    def _parse_push(self, hook: GitHubPushWebhookEvent) -> WebhookEvent:
        logger.info(f"{self.display_name} push to {hook.repository.full_name}: {len(hook.commits)} commit(s)")
        return WebhookEvent(
            platform=self.platform,
            event_type=EventType.PUSH,
            action=EventAction.PUSH,
            project_id=str(hook.repository.id or ""),
            project_name=hook.repository.full_name,
            project_url=hook.repository.html_url,
            author=hook.sender.login or hook.pusher.username or hook.pusher.name,
            branch=hook.ref.removeprefix("refs/heads/"),
            last_commit_id=hook.after,
            before_commit_id=hook.before,
            created=hook.created or is_zero_sha(hook.before),
            deleted=hook.deleted or is_zero_sha(hook.after),
            commits=[
                Commit(
                    id=c.id,
                    message=c.message,
                    author=c.author.username or c.author.name,
                    timestamp=c.timestamp,
                    url=c.url,
                )
                for c in hook.commits
            ],
        )

    def _repo_path(self, event: WebhookEvent) -> str:
        return f"/repos/{event.project_name}"

    async def _get_paginated(self, path: str, params: Mapping[str, Any] | None = None) -> list[Any]:
        page = 1
        items: list[Any] = []
        while True:
            query = {**(params or {}), self.page_size_param: self.page_size, "page": page}
            data = await self._request("GET", path, params=query)
            if not isinstance(data, list):
                raise TransportError(f"Unexpected {self.display_name} response shape for {path}: {data}")
            items.extend(data)
            if len(data) < self.page_size:
                break
            page += 1
        return items

    async def get_merge_request_changes(self, event: WebhookEvent, mr_id: int) -> list[CodeChange]:
        """拉取 PR 的变更文件列表（包含每个文件的 patch diff）。"""
        path = f"{self._repo_path(event)}/pulls/{mr_id}/files"

        async def fetch() -> list[CodeChange]:
            return [_to_code_change(GitHubFile.model_validate(x)) for x in await self._get_paginated(path)]

        return await self._with_retry(f"PR #{mr_id} files", fetch)

    async def get_merge_request_commits(self, event: WebhookEvent, mr_id: int) -> list[Commit]:
        path = f"{self._repo_path(event)}/pulls/{mr_id}/commits"

        async def fetch() -> list[Commit]:
            return [_to_commit(GitHubCommit.model_validate(x)) for x in await self._get_paginated(path)]

        return await self._with_retry(f"PR #{mr_id} commits", fetch)

    async def add_merge_request_note(self, event: WebhookEvent, mr_id: int, body: str) -> None:
        """PR 的全局评论走 issues comments 接口。"""
        await self._request("POST", f"{self._repo_path(event)}/issues/{mr_id}/comments", json={"body": body})
        logger.info(f"{self.display_name} comment posted on PR #{mr_id} ({event.project_name})")

    async def get_push_commits(self, event: WebhookEvent, branch: str) -> list[Commit]:
        items = await self._get_paginated(f"{self._repo_path(event)}/commits", params={"sha": branch})
        return [_to_commit(GitHubCommit.model_validate(x)) for x in items]

    async def add_push_comment(self, event: WebhookEvent, commit_id: str, body: str) -> None:
        await self._request("POST", f"{self._repo_path(event)}/commits/{commit_id}/comments", json={"body": body})
        logger.info(f"{self.display_name} commit comment posted on {commit_id[:8]} ({event.project_name})")

    async def _compare(self, event: WebhookEvent, base: str, head: str) -> list[CodeChange]:
        data = await self._request("GET", f"{self._repo_path(event)}/compare/{base}...{head}")
        return [_to_code_change(f) for f in GitHubCompareResult.model_validate(data or {}).files]

    async def _fetch_parent_commit_id(self, event: WebhookEvent, sha: str) -> str:
        data = await self._request("GET", f"{self._repo_path(event)}/commits/{sha}")
        commit = GitHubCommit.model_validate(data)
        return commit.parents[0].sha if commit.parents else ""

    async def _list_protected_branch_patterns(self, event: WebhookEvent) -> list[str]:
        items = await self._get_paginated(f"{self._repo_path(event)}/branches", params={"protected": "true"})
        return [GitHubBranch.model_validate(x).name for x in items]
