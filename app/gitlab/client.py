"""
GitLab adapter（v4 API）。

约定：
- 鉴权头 `PRIVATE-TOKEN`，API 前缀 `{base_url}/api/v4`
- GitLab 的 diff 不带行数统计，新增/删除行数从 diff 文本里数
- webhook token 校验额外接受 access token 本身（兼容老的 hook 配置）
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from app.errors import UnsupportedEventError
from app.gitlab.schemas import GitLabChange
from app.gitlab.schemas import GitLabCommit
from app.gitlab.schemas import GitLabCompareResult
from app.gitlab.schemas import GitLabMergeRequestChanges
from app.gitlab.schemas import GitLabMergeRequestWebhookEvent
from app.gitlab.schemas import GitLabNoteWebhookEvent
from app.gitlab.schemas import GitLabProtectedBranch
from app.gitlab.schemas import GitLabPushWebhookEvent
from app.scm.base import BasePlatformAdapter, is_zero_sha
from app.scm.diff import count_diff_lines
from app.scm.models import CodeChange, Commit, EventAction, EventType, Platform, WebhookEvent

logger = logging.getLogger(__name__)

_MR_ACTIONS: dict[str, EventAction] = {
    "open": EventAction.OPEN,
    "reopen": EventAction.REOPEN,
    "update": EventAction.UPDATE,
    "merge": EventAction.MERGE,
    "close": EventAction.CLOSE,
}


def _to_code_change(change: GitLabChange) -> CodeChange:
    additions, deletions = count_diff_lines(change.diff)
    return CodeChange(
        diff=change.diff,
        new_path=change.new_path,
        old_path=change.old_path or None,
        additions=additions,
        deletions=deletions,
        deleted_file=change.deleted_file,
    )


def _to_commit(commit: GitLabCommit) -> Commit:
    return Commit(
        id=commit.id,
        short_id=commit.short_id,
        title=commit.title,
        message=commit.message,
        author=commit.author_name,
        timestamp=commit.created_at,
        url=commit.web_url,
    )


class GitLabAdapter(BasePlatformAdapter):
    platform = Platform.GITLAB
    display_name = "GitLab"

    def _api_base_url(self, base_url: str) -> str:
        return f"{base_url}/api/v4"

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"PRIVATE-TOKEN": access_token}

    def verify_token(self, token: str, secret: str) -> bool:
        if super().verify_token(token, secret):
            return True
        return bool(self._access_token) and super().verify_token(token, self._access_token)

    def parse_event(self, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise UnsupportedEventError("GitLab payload must be a JSON object")
        object_kind = payload.get("object_kind")
        logger.info(f"Parsing GitLab {object_kind} event")
        try:
            if object_kind == "merge_request":
                return self._parse_merge_request(GitLabMergeRequestWebhookEvent.model_validate(payload))
            if object_kind == "push":
                return self._parse_push(GitLabPushWebhookEvent.model_validate(payload))
            if object_kind == "note":
                return self._parse_note(GitLabNoteWebhookEvent.model_validate(payload))
        except ValidationError as exc:
            raise UnsupportedEventError(f"Malformed GitLab {object_kind} payload: {exc}") from exc
        raise UnsupportedEventError(f"Unsupported GitLab event type: {object_kind}")

    def _parse_merge_request(self, hook: GitLabMergeRequestWebhookEvent) -> WebhookEvent:
        attrs = hook.object_attributes
        logger.info(f"MR !{attrs.iid}: {attrs.action} - {hook.project.full_name}")
        return WebhookEvent(
            platform=Platform.GITLAB,
            event_type=EventType.MERGE_REQUEST,
            action=_MR_ACTIONS.get(attrs.action, EventAction.UPDATE),
            project_id=str(hook.project.id),
            project_name=hook.project.full_name,
            project_url=hook.project.web_url,
            author=hook.user.username or hook.user.name,
            url=attrs.url,
            source_branch=attrs.source_branch,
            target_branch=attrs.target_branch,
            mr_id=attrs.iid,
            is_draft=attrs.draft or attrs.work_in_progress,
            last_commit_id=attrs.last_commit.id,
        )

    def _parse_push(self, hook: GitLabPushWebhookEvent) -> WebhookEvent:
        project_name = hook.project.full_name if hook.project is not None else ""
        logger.info(f"Push to {project_name}: {len(hook.commits)} commit(s)")
        return WebhookEvent(
            platform=Platform.GITLAB,
            event_type=EventType.PUSH,
            action=EventAction.PUSH,
            project_id=str(hook.project_id),
            project_name=project_name,
            project_url=hook.project.web_url if hook.project is not None else "",
            author=hook.user_username or hook.user_name,
            branch=hook.ref.removeprefix("refs/heads/"),
            last_commit_id=hook.after,
            before_commit_id=hook.before,
            # GitLab payload 没有 created/deleted 标记，用全 0 SHA 推断
            created=is_zero_sha(hook.before),
            deleted=is_zero_sha(hook.after),
            commits=[
                Commit(
                    id=c.id,
                    title=c.title,
                    message=c.message,
                    author=c.author.name,
                    timestamp=c.timestamp,
                    url=c.url,
                )
                for c in hook.commits
            ],
        )

    def _parse_note(self, hook: GitLabNoteWebhookEvent) -> WebhookEvent:
        return WebhookEvent(
            platform=Platform.GITLAB,
            event_type=EventType.COMMENT,
            action=EventAction.COMMENT,
            project_id=str(hook.project.id),
            project_name=hook.project.full_name,
            project_url=hook.project.web_url,
            author=hook.user.username or hook.user.name,
        )

    async def get_merge_request_changes(self, event: WebhookEvent, mr_id: int) -> list[CodeChange]:
        """
        获取 MR changes（包含每个文件的 diff）。

        - GitLab v4 API: GET /projects/:id/merge_requests/:iid/changes
        - `access_raw_diffs=true` 避免大 diff 被截断
        """
        path = f"/projects/{event.project_id}/merge_requests/{mr_id}/changes"

        async def fetch() -> list[CodeChange]:
            data = await self._request("GET", path, params={"access_raw_diffs": "true"})
            changes = GitLabMergeRequestChanges.model_validate(data or {}).changes
            return [_to_code_change(c) for c in changes if not c.deleted_file]

        return await self._with_retry(f"MR !{mr_id} changes", fetch)

    async def get_merge_request_commits(self, event: WebhookEvent, mr_id: int) -> list[Commit]:
        path = f"/projects/{event.project_id}/merge_requests/{mr_id}/commits"

        async def fetch() -> list[Commit]:
            data = await self._request("GET", path)
            return [_to_commit(GitLabCommit.model_validate(item)) for item in data or []]

        return await self._with_retry(f"MR !{mr_id} commits", fetch)

    async def add_merge_request_note(self, event: WebhookEvent, mr_id: int, body: str) -> None:
        """在 MR 下发布一条全局评论（note）。"""
        await self._request("POST", f"/projects/{event.project_id}/merge_requests/{mr_id}/notes", json={"body": body})
        logger.info(f"GitLab note posted on MR !{mr_id} ({event.project_name})")

    async def get_push_commits(self, event: WebhookEvent, branch: str) -> list[Commit]:
        data = await self._request(
            "GET",
            f"/projects/{event.project_id}/repository/commits",
            params={"ref_name": branch},
        )
        return [_to_commit(GitLabCommit.model_validate(item)) for item in data or []]

    async def add_push_comment(self, event: WebhookEvent, commit_id: str, body: str) -> None:
        await self._request(
            "POST",
            f"/projects/{event.project_id}/repository/commits/{commit_id}/comments",
            json={"note": body},
        )
        logger.info(f"GitLab commit comment posted on {commit_id[:8]} ({event.project_name})")

    async def _compare(self, event: WebhookEvent, base: str, head: str) -> list[CodeChange]:
        data = await self._request(
            "GET",
            f"/projects/{event.project_id}/repository/compare",
            params={"from": base, "to": head},
        )
        return [_to_code_change(c) for c in GitLabCompareResult.model_validate(data or {}).diffs]

    async def _fetch_parent_commit_id(self, event: WebhookEvent, sha: str) -> str:
        data = await self._request("GET", f"/projects/{event.project_id}/repository/commits/{sha}")
        commit = GitLabCommit.model_validate(data)
        return commit.parent_ids[0] if commit.parent_ids else ""

    async def _list_protected_branch_patterns(self, event: WebhookEvent) -> list[str]:
        data = await self._request("GET", f"/projects/{event.project_id}/protected_branches")
        return [GitLabProtectedBranch.model_validate(item).name for item in data or []]
