"""
Code Review Engine。

流程（工程代码控制，LLM 只负责"思考"）：
- 过滤删除文件；没有可审查的变更直接返回 0 分（不调用 LLM）
- 渲染 diff，超出 token 预算按行截断
- 组装 prompt -> 取全局默认 provider -> 调用 LLM
- 两级解析（structured / fallback）+ 分数校验
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.llm.factory import LLMFactory
from app.review.models import DEFAULT_REVIEW_CONFIG, ReviewConfig, ReviewOutcome, ReviewResult
from app.review.parser import parse_review_result
from app.review.prompt import build_review_messages, format_changes
from app.review.tokens import count_tokens, truncate_by_tokens
from app.scm.models import CodeChange, Commit

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 10000

NO_CHANGES_MARKDOWN = "**No Code Changes**\n\nNo code changes detected for review."


class CodeReviewer:
    def __init__(self, llm_factory: LLMFactory) -> None:
        self._llm_factory = llm_factory

    async def review_code(
        self,
        changes: Sequence[CodeChange],
        commits: Sequence[Commit],
        config: ReviewConfig | None = None,
    ) -> ReviewOutcome:
        config = config or DEFAULT_REVIEW_CONFIG
        reviewable = [c for c in changes if not c.deleted_file]
        if not reviewable:
            logger.info("No code changes to review, skipping LLM call")
            return ReviewOutcome(mode="empty", result=ReviewResult(score=0, markdown=NO_CHANGES_MARKDOWN))

        commits_text = "\n".join(c.title for c in commits)
        changes_text = format_changes(reviewable)

        max_tokens = config.max_tokens or DEFAULT_MAX_TOKENS
        token_count = count_tokens(changes_text)
        if token_count > max_tokens:
            logger.warning(f"Token count ({token_count}) exceeds max ({max_tokens}), truncating")
            changes_text = truncate_by_tokens(changes_text, max_tokens)

        messages = build_review_messages(commits_text, changes_text, config.system_prompt)
        provider = await self._llm_factory.get_global_default_config()
        logger.info(f"Reviewing {len(reviewable)} file(s) with {provider.provider}/{provider.model}")
        completion = await self._llm_factory.complete(provider, messages, max_tokens=max_tokens)

        outcome = parse_review_result(completion.content)
        logger.info(
            f"Review parsed ({outcome.mode}): score={outcome.result.score}, issues={len(outcome.result.issues)}"
        )
        return outcome
