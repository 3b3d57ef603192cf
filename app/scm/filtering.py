"""
变更过滤：只把"值得审查"的文件交给 LLM。

规则：
- 删除的文件直接丢弃
- 只保留扩展名在白名单里的文件（大小写不敏感）
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from app.scm.models import CodeChange

DEFAULT_EXTENSIONS: tuple[str, ...] = (".java", ".py", ".php", ".ts", ".js", ".go", ".rust")


def parse_extensions(raw: str) -> tuple[str, ...]:
    """解析逗号分隔的扩展名列表，例如 `.py,.go` 或 `py, go`。"""
    items: list[str] = []
    for part in raw.split(","):
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        items.append(ext)
    return tuple(items)


def filter_changes(changes: Iterable[CodeChange], extensions: Sequence[str] | None = None) -> list[CodeChange]:
    allowed = tuple(ext.lower() for ext in (extensions if extensions is not None else DEFAULT_EXTENSIONS))
    return [
        change
        for change in changes
        if not change.deleted_file and change.new_path.lower().endswith(allowed)
    ]
