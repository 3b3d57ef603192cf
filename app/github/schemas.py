"""
GitHub Webhook / API response schemas（Pydantic）。

说明：
- 字段只覆盖 PR / push webhook 与所需 API 的子集
- Gitea 的 payload/响应与 GitHub 基本同构，这里的 schema 两边共用
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GitHubUser(BaseModel):
    login: str = ""
    id: int | None = None


class GitHubRepository(BaseModel):
    id: int | None = None
    name: str = ""
    full_name: str
    html_url: str = ""
    owner: GitHubUser = Field(default_factory=GitHubUser)


class GitHubPullRequestRef(BaseModel):
    ref: str
    sha: str = ""


class GitHubPullRequest(BaseModel):
    number: int
    html_url: str = ""
    draft: bool = False
    user: GitHubUser = Field(default_factory=GitHubUser)
    head: GitHubPullRequestRef
    base: GitHubPullRequestRef


class GitHubPullRequestWebhookEvent(BaseModel):
    """`pull_request` webhook event（action 保留原文，由 adapter 映射）。"""

    action: str = ""
    pull_request: GitHubPullRequest
    repository: GitHubRepository
    sender: GitHubUser = Field(default_factory=GitHubUser)


class GitHubPushCommitAuthor(BaseModel):
    name: str = ""
    username: str = ""


class GitHubPushCommit(BaseModel):
    id: str
    message: str = ""
    timestamp: str = ""
    url: str = ""
    author: GitHubPushCommitAuthor = Field(default_factory=GitHubPushCommitAuthor)


class GitHubPushWebhookEvent(BaseModel):
    ref: str
    before: str = ""
    after: str = ""
    created: bool = False
    deleted: bool = False
    commits: list[GitHubPushCommit] = Field(default_factory=list)
    repository: GitHubRepository
    sender: GitHubUser = Field(default_factory=GitHubUser)
    pusher: GitHubPushCommitAuthor = Field(default_factory=GitHubPushCommitAuthor)


class GitHubFile(BaseModel):
    """
    PR 文件 / compare 文件 item。

    patch 可能缺失（大文件/二进制/被截断），此时按空 diff 处理。
    """

    filename: str
    status: str = "modified"
    previous_filename: str | None = None
    additions: int = 0
    deletions: int = 0
    patch: str | None = None


class GitHubCompareResult(BaseModel):
    files: list[GitHubFile] = Field(default_factory=list)


class GitHubCommitAuthorInfo(BaseModel):
    name: str = ""
    date: str = ""


class GitHubCommitInfo(BaseModel):
    message: str = ""
    author: GitHubCommitAuthorInfo | None = None


class GitHubCommitParent(BaseModel):
    sha: str


class GitHubCommit(BaseModel):
    """API 返回的 commit（列表 / 详情共用）。"""

    sha: str
    html_url: str = ""
    commit: GitHubCommitInfo = Field(default_factory=GitHubCommitInfo)
    author: GitHubUser | None = None
    parents: list[GitHubCommitParent] = Field(default_factory=list)


class GitHubBranch(BaseModel):
    name: str
