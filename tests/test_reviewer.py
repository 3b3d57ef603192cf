from __future__ import annotations

import json

import pytest

from app.review.models import ReviewConfig
from app.review.reviewer import NO_CHANGES_MARKDOWN, CodeReviewer
from app.review.tokens import TRUNCATION_MARKER
from app.scm.models import CodeChange, Commit

REVIEW_JSON = json.dumps({"score": 88, "summary": "ok", "issues": [], "suggestions": []})


@pytest.mark.anyio
async def test_empty_change_set_skips_llm(stub_llm_factory) -> None:
    factory = stub_llm_factory(REVIEW_JSON)
    reviewer = CodeReviewer(llm_factory=factory)

    outcome = await reviewer.review_code(
        changes=[CodeChange(new_path="gone.py", diff="-x", deleted_file=True)],
        commits=[],
    )

    assert outcome.mode == "empty"
    assert outcome.result.score == 0
    assert outcome.result.markdown == NO_CHANGES_MARKDOWN
    assert factory.calls == []


@pytest.mark.anyio
async def test_review_builds_prompt_from_config_and_changes(stub_llm_factory) -> None:
    factory = stub_llm_factory(REVIEW_JSON)
    reviewer = CodeReviewer(llm_factory=factory)
    config = ReviewConfig(style="strict", system_prompt="Be strict.", max_tokens=2048)

    outcome = await reviewer.review_code(
        changes=[CodeChange(new_path="app/main.py", old_path="app/old_main.py", diff="+print('hi')")],
        commits=[Commit(id="abc123456789", message="feat: greet\n\nbody")],
        config=config,
    )

    assert outcome.mode == "structured"
    assert outcome.result.score == 88
    [messages] = factory.calls
    assert messages[0].role == "system"
    assert messages[0].content == "Be strict."
    user = messages[1].content
    assert user.startswith("请审查以下代码变更：")
    assert "## 提交信息\nfeat: greet\n" in user
    assert "--- a/app/old_main.py\n+++ b/app/main.py\n+print('hi')" in user
    assert factory.max_tokens == [2048]


@pytest.mark.anyio
async def test_review_truncates_oversized_diff(stub_llm_factory) -> None:
    factory = stub_llm_factory("no json here, ## Score: 70")
    reviewer = CodeReviewer(llm_factory=factory)
    big_diff = "\n".join(f"+ value = compute(item_{i}) + offset" for i in range(500))

    outcome = await reviewer.review_code(
        changes=[CodeChange(new_path="big.py", diff=big_diff)],
        commits=[],
        config=ReviewConfig(system_prompt="p", max_tokens=100),
    )

    assert outcome.mode == "fallback"
    assert outcome.result.score == 70
    user = factory.calls[0][1].content
    assert TRUNCATION_MARKER.strip() in user
    assert "无提交信息" in user
