"""
Webhook Orchestrator（核心流程编排）。

流程由工程代码控制：
- 识别平台 -> (GitHub ping 直接返回) -> 惰性初始化 adapter -> token 校验 -> 解析事件
- comment 事件只确认收到；draft MR 跳过
- MR：幂等预检 -> 项目/审查配置 -> 拉 changes + commits -> 过滤 -> 审查 -> 回写评论 -> 通知 -> 记录
- push：用 payload 里的 commits -> push diff -> 审查 -> 评论到最后一个提交 -> 通知 -> 记录

说明：
- 幂等预检只是"提示性"的单独读；真正的去重靠存储层唯一约束
- 通知失败只记日志，不影响主流程
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from app.errors import TokenVerificationError, UnsupportedEventError
from app.notification.dispatcher import NotificationDispatcher, ReviewNotification
from app.review.config_resolver import resolve_review_config
from app.review.models import ReviewOutcome
from app.review.reviewer import CodeReviewer
from app.scm.base import BasePlatformAdapter
from app.scm.models import CodeChange, Commit, EventType, Platform, WebhookEvent
from app.scm.registry import AdapterRegistry
from app.storage.base import ConfigStore, ReviewLogSink
from app.storage.models import Project, ReviewLogRecord
from app.webhook.detection import detect_platform, get_event_header, get_token_header
from app.webhook.schemas import WebhookResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOrchestrator:
    """Orchestrator 运行时依赖集合。"""

    adapters: AdapterRegistry
    config_store: ConfigStore
    review_sink: ReviewLogSink
    reviewer: CodeReviewer
    notifier: NotificationDispatcher
    webhook_secrets: Mapping[Platform, str]

    async def process_webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookResult:
        platform = detect_platform(headers, payload)
        logger.info(f"Processing {platform.value} webhook event")

        if platform is Platform.GITHUB and get_event_header(headers, platform) == "ping":
            logger.info("GitHub ping event received")
            return WebhookResult(success=True, message="Webhook configured successfully")

        await self.adapters.ensure_initialized()
        adapter = self.adapters.get(platform)

        token = get_token_header(headers, platform)
        secret = self.webhook_secrets.get(platform, "")
        if token and secret and not adapter.verify_token(token, secret):
            raise TokenVerificationError(f"{platform.value} webhook token verification failed")

        try:
            event = adapter.parse_event(payload)
        except UnsupportedEventError as exc:
            logger.warning(f"Ignoring {platform.value} webhook: {exc}")
            return WebhookResult(success=False, message=str(exc))

        if event.event_type is EventType.COMMENT:
            logger.info("Comment event received, no action needed")
            return WebhookResult(success=True, message="Comment event received")
        if event.is_merge_request:
            return await self._handle_merge_request(adapter, event)
        if event.event_type is EventType.PUSH:
            return await self._handle_push(adapter, event)
        return WebhookResult(success=True, message="Event received")

    async def test_connection(self, payload: Any) -> WebhookResult:
        """只根据 payload 识别平台并解析，不发任何外部请求。"""
        platform = detect_platform({}, payload)
        try:
            event = self.adapters.get(platform).parse_event(payload)
        except UnsupportedEventError as exc:
            return WebhookResult(success=False, message=str(exc))
        return WebhookResult(
            success=True,
            message=f"{platform.value} {event.event_type.value} event parsed for {event.project_name}",
        )

    async def _review_exists(self, event: WebhookEvent, review_type: Literal["mr", "push"], commit_id: str) -> bool:
        if not commit_id:
            return False
        try:
            return await self.review_sink.exists_review_log(event.project_name, commit_id, review_type)
        except Exception as exc:
            logger.warning(f"Idempotency check failed for {event.project_name}@{commit_id[:8]}, continuing: {exc}")
            return False

    async def _resolve_project(self, event: WebhookEvent) -> Project | None:
        identifier = event.project_url or event.project_name
        project = await self.config_store.find_project_by_repo_identifier(identifier, event.platform)
        if project is None:
            logger.warning(f"No project configured for {identifier} ({event.platform.value}), using defaults")
        return project

    async def _notify(self, project: Project | None, notification: ReviewNotification) -> None:
        try:
            await self.notifier.notify_project(project, notification)
        except Exception:
            logger.exception(f"Notification for {notification.project_name} failed")

    async def _review(
        self,
        project: Project | None,
        changes: Sequence[CodeChange],
        commits: Sequence[Commit],
    ) -> ReviewOutcome:
        config = await resolve_review_config(self.config_store, project)
        return await self.reviewer.review_code(changes, commits, config)

    async def _handle_merge_request(self, adapter: BasePlatformAdapter, event: WebhookEvent) -> WebhookResult:
        mr_id = int(event.mr_id or 0)
        if event.is_draft:
            logger.info(f"Draft MR #{mr_id} of {event.project_name} skipped")
            return WebhookResult(success=True, message="Draft MR skipped")

        if await self._review_exists(event, "mr", event.last_commit_id):
            logger.info(f"Review already exists for {event.project_name}@{event.last_commit_id[:8]}")
            return WebhookResult(success=True, message="Review already exists for this commit")

        project = await self._resolve_project(event)
        if project is not None and not (project.is_enabled and project.auto_review_enabled):
            logger.info(f"Auto review disabled for project {project.name}")
            return WebhookResult(success=True, message="Auto review disabled for this project")

        changes = await adapter.get_merge_request_changes(event, mr_id)
        commits = await adapter.get_merge_request_commits(event, mr_id)
        filtered = adapter.filter_changes(changes)
        logger.info(f"MR #{mr_id}: {len(changes)} change(s), {len(filtered)} after filter, {len(commits)} commit(s)")

        outcome = await self._review(project, filtered, commits)
        result = outcome.result
        await adapter.add_merge_request_note(event, mr_id, result.markdown)

        await self._notify(
            project,
            ReviewNotification(
                project_name=event.project_name,
                author=event.author,
                score=result.score,
                url=event.url or None,
                source_branch=event.source_branch,
                target_branch=event.target_branch,
                review_content=result.markdown,
            ),
        )

        await self.review_sink.append_review_log(
            ReviewLogRecord(
                review_type="mr",
                project_id=event.project_id or None,
                project_name=event.project_name,
                author=event.author,
                source_branch=event.source_branch,
                target_branch=event.target_branch,
                score=result.score,
                review_result={"mode": outcome.mode, **result.model_dump(mode="json")},
                url=event.url or None,
                last_commit_id=event.last_commit_id,
                additions=sum(c.additions for c in filtered),
                deletions=sum(c.deletions for c in filtered),
                commit_messages="; ".join(c.title for c in commits),
            )
        )
        logger.info(f"MR #{mr_id} of {event.project_name} reviewed: score={result.score}")
        return WebhookResult(success=True, message="Review completed", score=result.score)

    async def _handle_push(self, adapter: BasePlatformAdapter, event: WebhookEvent) -> WebhookResult:
        commits = event.commits
        if not commits:
            logger.info(f"Push to {event.project_name}/{event.branch} has no commits")
            return WebhookResult(success=True, message="No commits in this push")

        last_commit = commits[-1]
        head = event.last_commit_id or last_commit.id
        if await self._review_exists(event, "push", head):
            logger.info(f"Review already exists for {event.project_name}@{head[:8]}")
            return WebhookResult(success=True, message="Review already exists for this commit")

        project = await self._resolve_project(event)
        if project is not None and not (project.is_enabled and project.auto_review_enabled):
            logger.info(f"Auto review disabled for project {project.name}")
            return WebhookResult(success=True, message="Auto review disabled for this project")

        # 基准取 payload 第一个提交的父提交
        changes = await adapter.get_push_changes(event, "", head)
        filtered = adapter.filter_changes(changes)
        logger.info(f"Push {event.branch}: {len(changes)} change(s), {len(filtered)} after filter")

        outcome = await self._review(project, filtered, commits)
        result = outcome.result
        await adapter.add_push_comment(event, last_commit.id, result.markdown)

        await self._notify(
            project,
            ReviewNotification(
                project_name=event.project_name,
                author=event.author,
                score=result.score,
                url=last_commit.url or None,
                source_branch=event.branch,
                review_content=result.markdown,
            ),
        )

        await self.review_sink.append_review_log(
            ReviewLogRecord(
                review_type="push",
                project_id=event.project_id or None,
                project_name=event.project_name,
                author=event.author,
                branch=event.branch,
                score=result.score,
                review_result={"mode": outcome.mode, **result.model_dump(mode="json")},
                url=last_commit.url or None,
                last_commit_id=head,
                additions=sum(c.additions for c in filtered),
                deletions=sum(c.deletions for c in filtered),
                commit_messages="; ".join(c.title for c in commits),
            )
        )
        logger.info(f"Push {event.project_name}/{event.branch}@{head[:8]} reviewed: score={result.score}")
        return WebhookResult(success=True, message="Review completed", score=result.score)
