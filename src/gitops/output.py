"""
Post-processing of command output before it is returned to the agent.

- truncate_output: keep the first N lines and append one marker line
- filter_binary_diffs: flag "Binary files ... differ" lines instead of dumping them
"""

import re
from typing import Final

MAX_DIFF_LINES: Final[int] = 500
MAX_LOG_ENTRIES: Final[int] = 200
DEFAULT_LOG_COUNT: Final[int] = 20

BINARY_SKIPPED_SUFFIX: Final[str] = " [binary — skipped]"

_TRUNCATION_MARKER: Final[re.Pattern[str]] = re.compile(
    r"… truncated \((\d+) more lines of (.+)\)"
)


def truncation_marker(dropped: int, label: str) -> str:
    return f"… truncated ({dropped} more lines of {label})"


def truncate_output(text: str, max_lines: int, label: str = "output") -> str:
    """Keep the first max_lines lines of text.

    A trailing newline does not count as an extra line. When lines are
    dropped, a single marker line is appended naming how many and of what.
    Truncating already-truncated text folds the earlier marker into the new
    count, so truncate_output(truncate_output(x, n), n) == truncate_output(x, n).

    Args:
        text: Command output
        max_lines: Maximum number of content lines to keep
        label: Kind of output, used in the marker (e.g. "log", "diff")

    Returns:
        text unchanged if it fits, otherwise the kept lines plus the marker.
    """
    if max_lines < 0:
        raise ValueError(f"max_lines must be >= 0, got {max_lines}")

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()

    previously_dropped = 0
    if lines and (match := _TRUNCATION_MARKER.fullmatch(lines[-1])):
        previously_dropped = int(match.group(1))
        lines.pop()

    if len(lines) <= max_lines:
        return text

    dropped = len(lines) - max_lines + previously_dropped
    return "\n".join([*lines[:max_lines], truncation_marker(dropped, label)])


def _is_binary_diff_line(line: str) -> bool:
    return line.startswith("Binary files") and "differ" in line


def is_binary_diff(text: str) -> bool:
    return any(_is_binary_diff_line(line) for line in text.split("\n"))


def filter_binary_diffs(text: str) -> str:
    """Suffix every "Binary files ... differ" line with a skipped marker.

    Lines are rewritten, not removed, so the caller still learns which
    binary files changed. Already-marked lines are left alone.
    """
    return "\n".join(
        line + BINARY_SKIPPED_SUFFIX
        if _is_binary_diff_line(line) and not line.endswith(BINARY_SKIPPED_SUFFIX)
        else line
        for line in text.split("\n")
    )
