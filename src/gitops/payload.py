"""
Secure message channel for free-text payloads.

Commit messages and PR bodies never travel as command-line arguments. They
are written to a private temporary file and the command receives a file
reference (--file, --body-file). The file belongs to exactly one invocation
and is removed on every exit path.
"""

import contextlib
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from msgspec import Struct


class TempPayloadHandle(Struct, frozen=True):
    """Ownership token for one temporary payload file."""

    path: Path

    def __fspath__(self) -> str:
        return str(self.path)


@contextlib.contextmanager
def secure_payload(
    content: str, *, kind: str = "msg", suffix: str = ".txt"
) -> Iterator[TempPayloadHandle]:
    """Write content to a private temp file for the duration of the block.

    The file is created with mode 0600 and an unpredictable name in the
    host's temporary directory, written verbatim as UTF-8, and unlinked when
    the block exits, whether normally or by an exception.

    Args:
        content: Payload text, written without modification
        kind: Short tag embedded in the filename (e.g. "commit-msg")
        suffix: Filename suffix

    Yields:
        TempPayloadHandle for the file
    """
    # mkstemp: O_EXCL creation, 0600 permissions, random name
    fd, name = tempfile.mkstemp(prefix=f"gitops-{kind}-", suffix=suffix)
    handle = TempPayloadHandle(path=Path(name))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
        yield handle
    finally:
        # Best-effort: an unlink failure is not surfaced to the caller
        with contextlib.suppress(OSError):
            handle.path.unlink(missing_ok=True)
