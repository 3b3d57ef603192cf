from __future__ import annotations


def count_diff_lines(diff: str) -> tuple[int, int]:
    """统计 unified diff 的新增/删除行数（不计 `+++` / `---` 文件头）。"""
    additions = 0
    deletions = 0
    for line in diff.splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
            continue
        if line.startswith("-") and not line.startswith("---"):
            deletions += 1
            continue
    return additions, deletions
