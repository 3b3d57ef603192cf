"""
审查 prompt 组装。

约定：
- system message 来自 ReviewConfig（数据库或默认配置）
- user message 固定为中文模板：提交信息 + diff + JSON 输出约定
"""

from __future__ import annotations

from collections.abc import Sequence

from app.llm.client import ChatMessage
from app.scm.models import CodeChange

OUTPUT_CONTRACT = """## 输出格式
请只输出一个 JSON 对象（不要输出任何其它内容），字段如下：
{
  "score": 0-100 的整数,
  "summary": "整体评价",
  "strengths": ["优点"],
  "issues": [
    {"file": "文件路径", "line": 行号, "severity": "high|medium|low", "message": "问题描述", "suggestion": "修改建议"}
  ],
  "suggestions": ["整体改进建议"]
}"""


def format_changes(changes: Sequence[CodeChange]) -> str:
    """把变更渲染成 unified diff 文本（每个文件带 `--- a/` / `+++ b/` 头）。"""
    blocks: list[str] = []
    for change in changes:
        old_path = change.old_path or change.new_path
        blocks.append(f"--- a/{old_path}\n+++ b/{change.new_path}\n{change.diff}")
    return "\n".join(blocks)


def build_review_messages(commits_text: str, changes_text: str, system_prompt: str) -> list[ChatMessage]:
    user_content = (
        "请审查以下代码变更：\n\n"
        "## 提交信息\n"
        f"{commits_text or '无提交信息'}\n\n"
        "## 代码变更\n"
        f"```diff\n{changes_text}\n```\n\n"
        f"{OUTPUT_CONTRACT}"
    )
    return [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user_content),
    ]
