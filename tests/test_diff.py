from __future__ import annotations

from app.scm.diff import count_diff_lines


def test_count_diff_lines_ignores_file_headers() -> None:
    diff = "\n".join(
        [
            "--- a/app.py",
            "+++ b/app.py",
            "@@ -1,3 +1,4 @@",
            " line1",
            "-line2",
            "+line2_new",
            "+line3_new",
            " line4",
        ]
    )
    assert count_diff_lines(diff=diff) == (2, 1)


def test_count_diff_lines_empty() -> None:
    assert count_diff_lines(diff="") == (0, 0)
