"""
平台无关的领域模型（Pydantic）。

三个平台（GitLab / GitHub / Gitea）的 webhook 与 API 响应都会先被各自的 adapter
归一化成这里的结构，后续的 orchestrator / reviewer 只认这一套模型。
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Platform(str, Enum):
    GITLAB = "gitlab"
    GITHUB = "github"
    GITEA = "gitea"


class EventType(str, Enum):
    MERGE_REQUEST = "merge_request"
    PULL_REQUEST = "pull_request"
    PUSH = "push"
    COMMENT = "comment"


class EventAction(str, Enum):
    OPEN = "open"
    REOPEN = "reopen"
    UPDATE = "update"
    SYNCHRONIZE = "synchronize"
    MERGE = "merge"
    CLOSE = "close"
    PUSH = "push"
    COMMENT = "comment"


class Commit(BaseModel):
    """一次提交（来自 push payload 或 API）。"""

    id: str
    short_id: str = ""
    title: str = ""
    message: str = ""
    author: str = ""
    timestamp: str = ""
    url: str = ""

    @model_validator(mode="after")
    def _fill_derived(self) -> "Commit":
        if not self.short_id:
            self.short_id = self.id[:8]
        if not self.title and self.message:
            self.title = self.message.splitlines()[0]
        return self


class CodeChange(BaseModel):
    """单个文件的变更（diff 为不透明的 unified diff 文本）。"""

    diff: str = ""
    new_path: str
    old_path: str | None = None
    additions: int = 0
    deletions: int = 0
    deleted_file: bool = False


class WebhookEvent(BaseModel):
    """
    归一化后的 webhook 事件。

    不变量：
    - merge_request / pull_request：必须有 `mr_id`，不能有 `branch`
    - push：必须有 `branch`，不能有 `mr_id` / source / target
    - comment：两类字段都不带

    说明：adapter 是进程级单例，仓库标识与 push 上下文都放在事件上随请求传递。
    """

    platform: Platform
    event_type: EventType
    action: EventAction
    project_id: str = ""
    project_name: str = ""
    project_url: str = ""
    author: str = ""
    url: str = ""

    source_branch: str | None = None
    target_branch: str | None = None
    mr_id: int | None = None
    is_draft: bool = False

    branch: str | None = None
    before_commit_id: str | None = None
    created: bool = False
    deleted: bool = False
    commits: list[Commit] = Field(default_factory=list)

    last_commit_id: str = ""

    @model_validator(mode="after")
    def _check_shape(self) -> "WebhookEvent":
        if self.event_type in (EventType.MERGE_REQUEST, EventType.PULL_REQUEST):
            if self.mr_id is None:
                raise ValueError("merge request events require mr_id")
            if self.branch is not None:
                raise ValueError("merge request events must not carry branch")
        elif self.event_type is EventType.PUSH:
            if self.branch is None:
                raise ValueError("push events require branch")
            if self.mr_id is not None or self.source_branch is not None or self.target_branch is not None:
                raise ValueError("push events must not carry merge request fields")
        else:
            if self.mr_id is not None or self.branch is not None:
                raise ValueError("comment events carry neither mr_id nor branch")
        return self

    @property
    def is_merge_request(self) -> bool:
        return self.event_type in (EventType.MERGE_REQUEST, EventType.PULL_REQUEST)
