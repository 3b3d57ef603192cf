"""
GitLab Webhook / API response schemas（Pydantic）。

为什么要单独放 schema：
- GitLab 的 payload 结构复杂，直接用 dict 容易写错 key
- schema 校验失败会立刻暴露问题（比"默默 None"安全）

说明：
- 字段只覆盖当前流程所需子集；未知字段一律忽略，不做严格枚举
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GitLabUser(BaseModel):
    username: str = ""
    name: str = ""


class GitLabProject(BaseModel):
    """Webhook 里的 project 子结构。"""

    id: int
    name: str = ""
    path_with_namespace: str = ""
    web_url: str = ""

    @property
    def full_name(self) -> str:
        return self.path_with_namespace or self.name


class GitLabLastCommit(BaseModel):
    id: str = ""


class GitLabMergeRequestObjectAttributes(BaseModel):
    """Merge request webhook 的 object_attributes 子结构。"""

    iid: int
    action: str = "update"
    source_branch: str
    target_branch: str
    url: str = ""
    last_commit: GitLabLastCommit = Field(default_factory=GitLabLastCommit)
    draft: bool = False
    work_in_progress: bool = False


class GitLabMergeRequestWebhookEvent(BaseModel):
    object_kind: str
    user: GitLabUser = Field(default_factory=GitLabUser)
    project: GitLabProject
    object_attributes: GitLabMergeRequestObjectAttributes


class GitLabCommitAuthor(BaseModel):
    name: str = ""
    email: str = ""


class GitLabPushCommit(BaseModel):
    id: str
    message: str = ""
    title: str = ""
    timestamp: str = ""
    url: str = ""
    author: GitLabCommitAuthor = Field(default_factory=GitLabCommitAuthor)


class GitLabPushWebhookEvent(BaseModel):
    object_kind: str
    before: str = ""
    after: str = ""
    ref: str
    user_username: str = ""
    user_name: str = ""
    project_id: int
    project: GitLabProject | None = None
    commits: list[GitLabPushCommit] = Field(default_factory=list)


class GitLabNoteWebhookEvent(BaseModel):
    object_kind: str
    user: GitLabUser = Field(default_factory=GitLabUser)
    project: GitLabProject


class GitLabChange(BaseModel):
    """MR changes / compare 返回的单个文件变更（diff 字符串）。"""

    old_path: str = ""
    new_path: str
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False
    diff: str = ""


class GitLabMergeRequestChanges(BaseModel):
    changes: list[GitLabChange] = Field(default_factory=list)


class GitLabCompareResult(BaseModel):
    diffs: list[GitLabChange] = Field(default_factory=list)


class GitLabCommit(BaseModel):
    """API 返回的 commit（列表 / 详情共用）。"""

    id: str
    short_id: str = ""
    title: str = ""
    message: str = ""
    author_name: str = ""
    created_at: str = ""
    web_url: str = ""
    parent_ids: list[str] = Field(default_factory=list)


class GitLabProtectedBranch(BaseModel):
    name: str
