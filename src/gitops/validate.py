"""
Token validators for caller-supplied git arguments.

Each validator classifies a single token by role (branch, ref, path, remote,
log filter, label, title) and returns a ValidationOutcome value. Validators
never raise; call sites that need an exception use require().

Every validator rejects a leading "-": with no shell in the way, a value
that starts with a dash is the one remaining route by which caller data can
be reinterpreted as a flag.
"""

import re
from typing import Final

from msgspec import Struct

from .errors import ValidationError

# ASCII only: re's \w would admit unicode letters
_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"[a-zA-Z0-9._/\-]+")

SHELL_METACHARACTERS: Final[frozenset[str]] = frozenset(";&|`$(){}!#~<>*?[]\n\r\\'\"")

# Rejected in paths even though metacharacters are not
_PATH_CONTROL_CHARACTERS: Final[frozenset[str]] = frozenset("\0\n\r")

# "+ref" forces a fetch or push refspec and ":ref" deletes the remote ref
_REFSPEC_PREFIXES: Final[tuple[str, ...]] = ("+", ":")

_BRANCH_FORBIDDEN_SEQUENCES: Final[tuple[str, ...]] = ("..", "@{", "~", "^")
_LOCK_SUFFIX: Final[str] = ".lock"


class Accepted(Struct, frozen=True):
    """Token passed its role-specific checks."""

    @property
    def ok(self) -> bool:
        return True


class Rejected(Struct, frozen=True):
    """Token failed; reason is safe to show the operator verbatim."""

    reason: str

    @property
    def ok(self) -> bool:
        return False


type ValidationOutcome = Accepted | Rejected

ACCEPTED: Final = Accepted()


def has_shell_metacharacter(value: str) -> bool:
    return any(ch in SHELL_METACHARACTERS for ch in value)


def validate_branch_name(name: str) -> ValidationOutcome:
    """Validate a local branch name.

    Blocks revision-range syntax ("..", "@{") and flag injection while still
    admitting hierarchical names such as "feature/x-1".
    """
    if not name:
        return Rejected("branch name cannot be empty")
    if name.startswith("-"):
        return Rejected("branch name cannot start with a dash (looks like a flag)")
    if name.startswith(".") or name.endswith(".") or name.endswith(_LOCK_SUFFIX):
        return Rejected("invalid branch name: cannot start or end with '.' or end with '.lock'")
    if any(seq in name for seq in _BRANCH_FORBIDDEN_SEQUENCES) or any(
        ch.isspace() for ch in name
    ):
        return Rejected("branch name contains invalid characters")
    if not _NAME_PATTERN.fullmatch(name):
        return Rejected(
            "branch name contains invalid characters: "
            "only a-z, A-Z, 0-9, '.', '_', '/', '-' allowed"
        )
    return ACCEPTED


def validate_ref(ref: str) -> ValidationOutcome:
    """Validate a commit-ish: commit refs, diff endpoints, pull targets, PR bases."""
    if not ref:
        return Rejected("ref cannot be empty")
    if ref.startswith("-"):
        return Rejected("ref cannot start with a dash")
    if ref.startswith(_REFSPEC_PREFIXES):
        return Rejected(f"ref cannot start with '{ref[0]}' (refspec syntax)")
    if has_shell_metacharacter(ref):
        return Rejected("ref contains invalid characters")
    return ACCEPTED


def validate_file_path(path: str) -> ValidationOutcome:
    """Validate a pathspec.

    Paths may contain spaces and shell metacharacters: they are always
    passed as separate argv elements after a "--" separator.
    """
    if not path:
        return Rejected("file path cannot be empty")
    if path.startswith("-"):
        return Rejected("file path cannot start with a dash")
    if any(ch in _PATH_CONTROL_CHARACTERS for ch in path):
        return Rejected("file path contains control characters")
    return ACCEPTED


def validate_remote_name(remote: str) -> ValidationOutcome:
    if not remote:
        return Rejected("remote name cannot be empty")
    if remote.startswith("-"):
        return Rejected("remote name cannot start with a dash")
    if has_shell_metacharacter(remote):
        return Rejected("remote name contains invalid characters")
    if ".." in remote or not _NAME_PATTERN.fullmatch(remote):
        return Rejected(
            "remote name contains invalid characters: "
            "only a-z, A-Z, 0-9, '.', '_', '/', '-' allowed"
        )
    return ACCEPTED


def validate_log_filter(value: str, field_name: str) -> ValidationOutcome:
    """Validate a free-text log filter (author, since, grep).

    These values are interpolated into a single "--field=value" argument, so
    the metacharacter set is rejected as well as the dash prefix.
    """
    if not value:
        return Rejected(f"{field_name} cannot be empty")
    if value.startswith("-"):
        return Rejected(f"{field_name} cannot start with a dash")
    if has_shell_metacharacter(value):
        return Rejected(f"{field_name} contains invalid characters")
    return ACCEPTED


def validate_label(label: str) -> ValidationOutcome:
    """Validate a PR label.

    Labels are joined with commas into one flag value; a comma would let a
    single label smuggle extra labels in.
    """
    if not label or not label.strip():
        return Rejected("label cannot be empty")
    if label.startswith("-"):
        return Rejected(f"label '{label}' cannot start with a dash")
    if "," in label:
        return Rejected(f"label '{label}' cannot contain a comma")
    if has_shell_metacharacter(label):
        return Rejected(f"label '{label}' contains invalid characters")
    return ACCEPTED


def validate_title(title: str) -> ValidationOutcome:
    if not title or not title.strip():
        return Rejected("PR title cannot be empty")
    if title.startswith("-"):
        return Rejected("PR title cannot start with a dash")
    return ACCEPTED


def require(outcome: ValidationOutcome, field: str | None = None) -> None:
    """Raise ValidationError if outcome is a rejection.

    Raises:
        ValidationError: With the rejection reason verbatim
    """
    if isinstance(outcome, Rejected):
        raise ValidationError(outcome.reason, field=field)
