"""
Policy engine: configuration-driven allow/deny decisions.

Gates are applied in order:
1. Protected-branch gate: force-push and deletion of a protected branch are
   denied unconditionally. No config flag overrides this.
2. Force-push gate: force requires allowForcePush; when allowed, the raw
   force flag is rewritten to --force-with-lease.
3. Main-commit gate: commits on a protected branch require allowMainCommit.

The engine only looks at branch identity and operation kind, never at file
contents or command output. Denials are terminal.
"""

from enum import Enum
from typing import Final

from msgspec import Struct

from .config import GitOpsConfig
from .errors import PolicyViolation

LEASE_FLAG: Final[str] = "--force-with-lease"
_RAW_FORCE_FLAGS: Final[frozenset[str]] = frozenset({"--force", "-f"})

RULE_PROTECTED_BRANCH: Final[str] = "protected-branch"
RULE_FORCE_PUSH: Final[str] = "force-push"
RULE_MAIN_COMMIT: Final[str] = "main-commit"


class OperationKind(str, Enum):
    COMMIT = "commit"
    PUSH = "push"
    DELETE_BRANCH = "delete_branch"


class PolicyRequest(Struct, frozen=True):
    """A resolved operation to be checked.

    branch is the target branch: the branch being committed on, pushed, or
    deleted. None means it could not be determined (detached HEAD).
    """

    kind: OperationKind
    branch: str | None = None
    force: bool = False
    args: tuple[str, ...] = ()


class PolicyDecision(Struct, frozen=True, omit_defaults=True):
    allowed: bool
    reason: str | None = None
    rule: str | None = None
    override: str | None = None
    rewritten_args: tuple[str, ...] | None = None


def _is_force_flag(arg: str) -> bool:
    return arg in _RAW_FORCE_FLAGS or arg == LEASE_FLAG or arg.startswith(LEASE_FLAG + "=")


def _deny(reason: str, rule: str, override: str | None = None) -> PolicyDecision:
    return PolicyDecision(allowed=False, reason=reason, rule=rule, override=override)


class PolicyEngine:
    """Applies GitOpsConfig rules to a PolicyRequest. Stateless."""

    __slots__ = ("config",)

    def __init__(self, config: GitOpsConfig) -> None:
        self.config = config

    def evaluate(self, request: PolicyRequest) -> PolicyDecision:
        cfg = self.config
        branch = request.branch
        force = request.force or any(_is_force_flag(a) for a in request.args)

        # 1. protected-branch gate (not overridable)
        if request.kind is OperationKind.DELETE_BRANCH:
            if branch is None:
                return _deny("branch name required for delete", RULE_PROTECTED_BRANCH)
            if cfg.is_protected(branch):
                return _deny(f"cannot delete protected branch '{branch}'", RULE_PROTECTED_BRANCH)

        if request.kind is OperationKind.PUSH and force:
            if branch is None:
                return _deny(
                    "force push requires an explicit target branch", RULE_PROTECTED_BRANCH
                )
            if cfg.is_protected(branch):
                return _deny(
                    f"force push to protected branch '{branch}' is always blocked.",
                    RULE_PROTECTED_BRANCH,
                )

            # 2. force-push gate
            if not cfg.allow_force_push:
                return _deny(
                    "force push is disabled. set allowForcePush: true in config to enable.",
                    RULE_FORCE_PUSH,
                    override="allowForcePush",
                )
            return PolicyDecision(allowed=True, rewritten_args=self._lease_args(request.args))

        # 3. main-commit gate
        if (
            request.kind is OperationKind.COMMIT
            and cfg.is_protected(branch)
            and not cfg.allow_main_commit
        ):
            return _deny(
                f"direct commits to '{branch}' are blocked. "
                "set allowMainCommit: true in config to override.",
                RULE_MAIN_COMMIT,
                override="allowMainCommit",
            )

        return PolicyDecision(allowed=True)

    def enforce(self, request: PolicyRequest) -> PolicyDecision:
        """Evaluate request, raising on denial.

        Raises:
            PolicyViolation: If any gate denies the request
        """
        decision = self.evaluate(request)
        if not decision.allowed:
            raise PolicyViolation(
                decision.reason or "denied by policy",
                rule=decision.rule or "policy",
                override=decision.override,
            )
        return decision

    @staticmethod
    def _lease_args(args: tuple[str, ...]) -> tuple[str, ...]:
        """Replace raw force flags with a single --force-with-lease."""
        rewritten = [LEASE_FLAG if a in _RAW_FORCE_FLAGS else a for a in args]
        if not any(a == LEASE_FLAG or a.startswith(LEASE_FLAG + "=") for a in rewritten):
            rewritten.insert(0, LEASE_FLAG)
        # Collapse duplicates introduced by "-f --force"
        deduped: list[str] = []
        for arg in rewritten:
            if arg == LEASE_FLAG and LEASE_FLAG in deduped:
                continue
            deduped.append(arg)
        return tuple(deduped)
