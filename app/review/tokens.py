"""
Token 估算与截断（不依赖具体模型的 tokenizer）。

估算规则：
- CJK 字符（含中文标点与全角字符）按 1.5 token/字
- 其余按空白分词，0.75 token/词
- 结果向上取整；空文本为 0
"""

from __future__ import annotations

import math
import re

_CJK_PATTERN = re.compile(
    "["
    "\u3000-\u303f"  # CJK 标点
    "\u3400-\u4dbf"  # 扩展 A
    "\u4e00-\u9fff"  # 基本汉字
    "\uf900-\ufaff"  # 兼容汉字
    "\uff00-\uffef"  # 全角字符
    "]"
)

TRUNCATION_MARKER = "\n... (content truncated due to length limit)"


def count_tokens(text: str) -> int:
    if not text:
        return 0
    cjk_count = len(_CJK_PATTERN.findall(text))
    word_count = len(_CJK_PATTERN.sub(" ", text).split())
    return math.ceil(cjk_count * 1.5 + word_count * 0.75)


def truncate_by_tokens(text: str, max_tokens: int) -> str:
    """按行从头保留，直到达到 token 预算；被截断时追加标记。"""
    if count_tokens(text) <= max_tokens:
        return text
    kept: list[str] = []
    used = 0
    for line in text.split("\n"):
        cost = count_tokens(line)
        if used + cost > max_tokens:
            break
        kept.append(line)
        used += cost
    return "\n".join(kept) + TRUNCATION_MARKER
