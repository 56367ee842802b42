"""
Closed command allowlist and the CommandRequest built from it.

A CommandRequest can only be constructed with a subcommand from the
allowlist enums; anything else is rejected before a process could ever be
spawned for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

from .errors import ValidationError

DEFAULT_TIMEOUT_MS: Final[int] = 30_000


class Executable(str, Enum):
    """External executables the runner is allowed to start."""

    GIT = "git"
    GH = "gh"


class GitSubcommand(str, Enum):
    STATUS = "status"
    DIFF = "diff"
    LOG = "log"
    BRANCH = "branch"
    ADD = "add"
    COMMIT = "commit"
    PUSH = "push"
    PULL = "pull"
    STASH = "stash"
    BLAME = "blame"
    REV_PARSE = "rev-parse"
    SYMBOLIC_REF = "symbolic-ref"
    REMOTE = "remote"
    CHECKOUT = "checkout"
    SWITCH = "switch"
    FETCH = "fetch"
    MERGE = "merge"
    REBASE = "rebase"
    TAG = "tag"
    SHOW = "show"
    CONFIG = "config"


class GhSubcommand(str, Enum):
    """PR-hosting CLI subcommands."""

    PR = "pr"


_SUBCOMMANDS: Final[dict[Executable, type[GitSubcommand] | type[GhSubcommand]]] = {
    Executable.GIT: GitSubcommand,
    Executable.GH: GhSubcommand,
}


def parse_subcommand(
    name: str, executable: Executable = Executable.GIT
) -> GitSubcommand | GhSubcommand:
    """Map a subcommand name onto the allowlist for executable.

    Raises:
        ValidationError: If name is not in the allowlist
    """
    enum_cls = _SUBCOMMANDS[executable]
    try:
        return enum_cls(name)
    except ValueError:
        raise ValidationError(
            f"blocked: {executable.value} subcommand '{name}' is not allowed",
            field="subcommand",
        ) from None


@dataclass(slots=True, frozen=True)
class CommandRequest:
    """A fully validated invocation of an allowlisted subcommand.

    Every element of args has passed the validator for its role, or is a
    literal flag inserted by trusted code.
    """

    subcommand: GitSubcommand | GhSubcommand
    args: tuple[str, ...] = ()
    cwd: str = "."
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    executable: Executable = Executable.GIT

    def __post_init__(self) -> None:
        if not isinstance(self.executable, Executable):
            try:
                object.__setattr__(self, "executable", Executable(self.executable))
            except ValueError:
                raise ValidationError(
                    f"blocked: executable '{self.executable}' is not allowed",
                    field="executable",
                ) from None

        subcommand = self.subcommand
        if not isinstance(subcommand, _SUBCOMMANDS[self.executable]):
            # Strings from loose callers, or a git subcommand aimed at gh
            name = subcommand.value if isinstance(subcommand, Enum) else str(subcommand)
            object.__setattr__(self, "subcommand", parse_subcommand(name, self.executable))

        if isinstance(self.args, str):
            raise ValidationError(
                "command arguments must be a sequence, not a string", field="args"
            )
        if not isinstance(self.args, tuple):
            object.__setattr__(self, "args", tuple(self.args))
        if not all(isinstance(arg, str) for arg in self.args):
            raise ValidationError("command arguments must be strings", field="args")

        if self.timeout_ms < 1:
            raise ValidationError("timeout must be at least 1ms", field="timeout_ms")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def argv(self) -> list[str]:
        return [self.executable.value, self.subcommand.value, *self.args]


def git(
    subcommand: GitSubcommand | str,
    *args: str,
    cwd: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> CommandRequest:
    """Shorthand for a git CommandRequest."""
    return CommandRequest(
        subcommand=subcommand,  # type: ignore[arg-type]
        args=args,
        cwd=cwd,
        timeout_ms=timeout_ms,
    )
