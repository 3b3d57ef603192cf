"""
Review 领域模型（Pydantic）。

用途：
- 作为 LLM JSON 输出解析后的统一结构
- `ReviewOutcome.mode` 标记结果来自哪一级解析（structured / fallback / empty）
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["info", "warning", "error", "critical"]


class ReviewIssue(BaseModel):
    """单条问题（文件/行号可能为空：模型没给或降级解析时）。"""

    severity: Severity = "info"
    file: str = ""
    line: int | None = None
    message: str
    code: str | None = None
    suggestion: str | None = None


class ReviewResult(BaseModel):
    score: int = Field(ge=0, le=100)
    markdown: str
    issues: list[ReviewIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)


class ReviewConfig(BaseModel):
    id: str | None = None
    style: str = "professional"
    system_prompt: str
    max_tokens: int = 4096


class ReviewOutcome(BaseModel):
    mode: Literal["structured", "fallback", "empty"]
    result: ReviewResult


DEFAULT_REVIEW_CONFIG = ReviewConfig(
    style="professional",
    system_prompt="You are a professional code review assistant.",
    max_tokens=4096,
)
