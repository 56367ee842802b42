"""
Error taxonomy for git operations.

ValidationError and PolicyViolation are raised before any process exists.
GitEnvironmentError is a per-operation precondition failure.
ProcessError wraps a subprocess that ran and failed; its message is the
executable's own diagnostic text, never reinterpreted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime import ProcessResult


class GitOpsError(Exception):
    """Base class for all gitops errors."""


class ValidationError(GitOpsError, ValueError):
    """A caller-supplied token failed its role-specific syntax rule."""

    def __init__(self, reason: str, field: str | None = None) -> None:
        self.reason = reason
        self.field = field
        super().__init__(reason)


class PolicyViolation(GitOpsError, PermissionError):
    """A syntactically valid request was denied by configuration rules.

    Attributes:
        rule: Name of the gate that fired (e.g. "protected-branch")
        override: Config flag that would permit the request, or None when
            the rule cannot be overridden.
    """

    def __init__(self, reason: str, rule: str, override: str | None = None) -> None:
        self.reason = reason
        self.rule = rule
        self.override = override
        super().__init__(reason)


class GitEnvironmentError(GitOpsError, RuntimeError):
    """Working directory is not a git work tree, or an executable is missing."""


class ProcessError(GitOpsError, RuntimeError):
    """A subprocess exited non-zero, timed out, or failed to start."""

    def __init__(self, result: ProcessResult, message: str | None = None) -> None:
        self.result = result
        super().__init__(message if message is not None else (result.stderr or result.stdout))


class ConfigError(GitOpsError, ValueError):
    """Configuration could not be resolved into a GitOpsConfig."""


def error_kind(exc: BaseException) -> str:
    """Stable snake_case tag for an error, used in tool responses."""
    match exc:
        case ValidationError():
            return "validation_error"
        case PolicyViolation():
            return "policy_violation"
        case GitEnvironmentError():
            return "environment_error"
        case ProcessError():
            return "process_error"
        case ConfigError():
            return "config_error"
        case _:
            return "internal_error"
