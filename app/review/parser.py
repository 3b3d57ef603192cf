"""
LLM 审查输出解析（两级）。

- structured：去掉 ``` 围栏后按 JSON 解析，`score` 必须是数字；markdown 由结构化数据确定性生成
- fallback：JSON 不可用时用正则从自由文本里提取分数/问题/建议（记 warning 日志）

两级结果都会经过 `validate_score`：有 critical 封顶 60，有 error 封顶 75，有任何问题封顶 85。
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Sequence
from typing import Any

from app.review.models import ReviewIssue, ReviewOutcome, ReviewResult, Severity

logger = logging.getLogger(__name__)

FALLBACK_DEFAULT_SCORE = 60

_FENCE_PREFIX = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_SUFFIX = re.compile(r"\s*```$")
_SCORE_PATTERNS = (
    re.compile(r"##\s*Score[：:]\s*(\d+)", re.IGNORECASE),
    re.compile(r"\bscore[：:]\s*(\d+)", re.IGNORECASE),
    re.compile(r"总分[：:]\s*(\d+)"),
    re.compile(r"评分[：:]\s*(\d+)"),
)
_SEVERITY_LINE = re.compile(r"^-\s*\*\*Severity\*\*:\s*(\S+)", re.MULTILINE)
_HIGH_RISK = re.compile(r"\b(?:high|critical)\b|严重|高风险", re.IGNORECASE)
_SUGGESTION = re.compile(r"suggestions?[:\s]+(.*?)(?:\n\n|$)", re.IGNORECASE | re.DOTALL)


def parse_severity(value: Any) -> Severity:
    lower = str(value or "").strip().lower()
    if lower in ("high", "critical"):
        return "critical"
    if lower in ("medium", "error"):
        return "error"
    if lower in ("low", "warning"):
        return "warning"
    return "info"


def validate_score(score: int, issues: Sequence[ReviewIssue]) -> int:
    if not issues:
        return score
    if any(i.severity == "critical" for i in issues):
        cap = 60
    elif any(i.severity == "error" for i in issues):
        cap = 75
    else:
        cap = 85
    if score > cap:
        logger.warning(f"Score adjusted from {score} to {cap} due to {len(issues)} issue(s)")
        return cap
    return score


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def _as_line(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _as_list(value: Any) -> list[Any]:
    """模型偶尔把列表字段写成单个字符串。"""
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        return [value]
    return []


def build_markdown_from_json(data: dict[str, Any], score: int) -> str:
    parts: list[str] = [f"## Score: {score}/100\n"]

    summary = data.get("summary")
    if summary:
        parts.append(f"### Summary\n{_as_text(summary)}\n")

    strengths = _as_list(data.get("strengths"))
    if strengths:
        parts.append("### Strengths\n")
        parts.extend(f"- {_as_text(s)}\n" for s in strengths)
        parts.append("\n")

    issues = [i for i in _as_list(data.get("issues")) if isinstance(i, dict)]
    if issues:
        parts.append("### Issues\n")
        for issue in issues:
            parts.append(f"- **File**: {issue.get('file', '')}\n")
            parts.append(f"- **Line**: {issue.get('line', '')}\n")
            parts.append(f"- **Severity**: {parse_severity(issue.get('severity'))}\n")
            parts.append(f"- **Message**: {issue.get('message', '')}\n")
            if issue.get("suggestion"):
                parts.append(f"- **Suggestion**: {issue['suggestion']}\n")
            parts.append("\n")

    suggestions = _as_list(data.get("suggestions"))
    if suggestions:
        parts.append("### Suggestions\n")
        parts.extend(f"- {_as_text(s)}\n" for s in suggestions)

    return "".join(parts)


def _load_json_object(content: str) -> dict[str, Any] | None:
    cleaned = _FENCE_SUFFIX.sub("", _FENCE_PREFIX.sub("", content.strip())).strip()
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 < start < end:
        # 模型在 JSON 前后夹带了说明文字
        candidates.append(cleaned[start : end + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def try_parse_json(content: str) -> ReviewResult | None:
    data = _load_json_object(content)
    if data is None:
        return None
    raw_score = data.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)) or not math.isfinite(raw_score):
        return None

    issues = [
        ReviewIssue(
            severity=parse_severity(raw.get("severity")),
            file=str(raw.get("file") or ""),
            line=_as_line(raw.get("line")),
            message=str(raw.get("message") or ""),
            code=raw.get("code") if isinstance(raw.get("code"), str) else None,
            suggestion=raw.get("suggestion") if isinstance(raw.get("suggestion"), str) else None,
        )
        for raw in _as_list(data.get("issues"))
        if isinstance(raw, dict)
    ]
    score = validate_score(max(0, min(100, round(raw_score))), issues)
    return ReviewResult(
        score=score,
        markdown=build_markdown_from_json(data, score),
        issues=issues,
        suggestions=[_as_text(s) for s in _as_list(data.get("suggestions"))],
        strengths=[_as_text(s) for s in _as_list(data.get("strengths"))],
    )


def _extract_score(text: str) -> int | None:
    for pattern in _SCORE_PATTERNS:
        match = pattern.search(text)
        if match:
            return max(0, min(100, int(match.group(1))))
    return None


def summarize_markdown(markdown: str) -> tuple[int | None, int]:
    """从渲染好的审查 markdown 里取回 (分数, 问题数)。"""
    return _extract_score(markdown), len(_SEVERITY_LINE.findall(markdown))


def parse_review_result_fallback(content: str) -> ReviewResult:
    score, issue_count = summarize_markdown(content)
    if score is None:
        score = FALLBACK_DEFAULT_SCORE

    issues = [
        ReviewIssue(severity=parse_severity(value), file="unknown", message="Issue extracted from review text")
        for value in _SEVERITY_LINE.findall(content)
    ]
    if not issue_count and _HIGH_RISK.search(content):
        issues.append(
            ReviewIssue(severity="critical", file="unknown", message="Issues found in code (extracted from fallback)")
        )

    suggestions: list[str] = []
    match = _SUGGESTION.search(content)
    if match and match.group(1).strip():
        suggestions.append(match.group(1).strip())

    return ReviewResult(
        score=validate_score(score, issues),
        markdown=content,
        issues=issues,
        suggestions=suggestions,
    )


def parse_review_result(content: str) -> ReviewOutcome:
    result = try_parse_json(content)
    if result is not None:
        return ReviewOutcome(mode="structured", result=result)
    logger.warning("LLM output is not valid review JSON, using fallback text parsing")
    return ReviewOutcome(mode="fallback", result=parse_review_result_fallback(content))
