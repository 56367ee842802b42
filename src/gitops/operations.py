"""
High-level git operations built on the validated command core.

Each operation takes its own typed request struct. Fields are validated when
the struct is constructed, so an operation never sees an unchecked token.
parse_request() builds a struct from a loose parameter mapping (the shape the
tool layer receives) and reports failures as ValidationError.

Control flow for every operation:
    request struct (validated) -> repo precondition -> policy engine
    -> CommandRequest (allowlisted, "--" before paths) -> runner
    -> output governor -> text
"""

from __future__ import annotations

import os
import time
from collections.abc import Mapping
from enum import Enum
from typing import Any, Final

import msgspec
from msgspec import Struct

from .audit import AuditLog
from .commands import (
    DEFAULT_TIMEOUT_MS,
    CommandRequest,
    Executable,
    GhSubcommand,
    GitSubcommand,
)
from .config import GitOpsConfig
from .errors import GitEnvironmentError, PolicyViolation, ProcessError, ValidationError
from .output import (
    DEFAULT_LOG_COUNT,
    MAX_DIFF_LINES,
    MAX_LOG_ENTRIES,
    filter_binary_diffs,
    truncate_output,
)
from .payload import secure_payload
from .policy import OperationKind, PolicyDecision, PolicyEngine, PolicyRequest
from .runtime import LocalRunner, ProcessResult, ProcessRunner
from .validate import (
    Rejected,
    require,
    validate_branch_name,
    validate_file_path,
    validate_label,
    validate_log_filter,
    validate_ref,
    validate_remote_name,
    validate_title,
)

BLAME_DEFAULT_SPAN: Final[int] = 20
SUMMARY_LOG_COUNT: Final[int] = 5
GH_INSTALL_HINT: Final[str] = (
    "gh CLI is not installed. install it from https://cli.github.com/ to create PRs."
)
NOT_A_REPO: Final[str] = "not a git repository (or any parent up to mount point)"


def _require_paths(paths: tuple[str, ...], field: str) -> None:
    for p in paths:
        outcome = validate_file_path(p)
        if isinstance(outcome, Rejected):
            raise ValidationError(f"invalid path '{p}': {outcome.reason}", field=field)


# ---------------------------------------------------------------------------
# Typed requests
# ---------------------------------------------------------------------------


class OperationRequest(Struct, frozen=True, kw_only=True, rename="camel"):
    """Common fields. cwd defaults to the process working directory."""

    cwd: str | None = None


class StatusRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    short: bool = False


class DiffRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    staged: bool = False
    ref1: str | None = None
    ref2: str | None = None
    paths: tuple[str, ...] = ()
    name_only: bool = False

    def __post_init__(self) -> None:
        if self.ref1 is not None:
            require(validate_ref(self.ref1), "ref1")
        if self.ref2 is not None:
            require(validate_ref(self.ref2), "ref2")
        _require_paths(self.paths, "paths")


class LogRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    count: int = DEFAULT_LOG_COUNT
    oneline: bool = False
    ref: str | None = None
    paths: tuple[str, ...] = ()
    author: str | None = None
    since: str | None = None
    grep: str | None = None

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValidationError("count must be at least 1", field="count")
        if self.ref is not None:
            require(validate_ref(self.ref), "ref")
        for name in ("author", "since", "grep"):
            value = getattr(self, name)
            if value is not None:
                require(validate_log_filter(value, name), name)
        _require_paths(self.paths, "paths")

    @property
    def effective_count(self) -> int:
        return min(self.count, MAX_LOG_ENTRIES)


class BranchAction(str, Enum):
    LIST = "list"
    CREATE = "create"
    SWITCH = "switch"
    DELETE = "delete"


class BranchRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    action: BranchAction = BranchAction.LIST
    name: str | None = None
    start_point: str | None = None
    all: bool = False

    def __post_init__(self) -> None:
        if self.action is not BranchAction.LIST:
            if self.name is None:
                raise ValidationError(
                    f"branch name required for '{self.action.value}'", field="name"
                )
            require(validate_branch_name(self.name), "name")
        if self.start_point is not None:
            require(validate_ref(self.start_point), "startPoint")


class CommitRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    message: str
    files: tuple[str, ...] = ()
    all: bool = False

    def __post_init__(self) -> None:
        if not self.message.strip():
            raise ValidationError("commit message cannot be empty", field="message")
        _require_paths(self.files, "files")


class PushRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    remote: str | None = None
    branch: str | None = None
    force: bool = False
    set_upstream: bool = False
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.remote is not None:
            require(validate_remote_name(self.remote), "remote")
        if self.branch is not None:
            require(validate_branch_name(self.branch), "branch")


class GitPullRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    """Parameters for `git pull` (not a hosted pull request)."""

    remote: str | None = None
    branch: str | None = None
    rebase: bool = False

    def __post_init__(self) -> None:
        if self.remote is not None:
            require(validate_remote_name(self.remote), "remote")
        if self.branch is not None:
            require(validate_ref(self.branch), "branch")


class StashAction(str, Enum):
    PUSH = "push"
    POP = "pop"
    LIST = "list"
    DROP = "drop"
    SHOW = "show"


class StashRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    action: StashAction = StashAction.PUSH
    message: str | None = None
    index: int = 0

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValidationError("stash index cannot be negative", field="index")

    @property
    def stash_ref(self) -> str:
        return f"stash@{{{self.index}}}"


class BlameRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    file: str
    start_line: int | None = None
    end_line: int | None = None

    def __post_init__(self) -> None:
        require(validate_file_path(self.file), "file")
        if self.start_line is not None and self.start_line < 1:
            raise ValidationError("startLine must be at least 1", field="startLine")
        if self.end_line is not None and self.end_line < 1:
            raise ValidationError("endLine must be at least 1", field="endLine")
        if (
            self.start_line is not None
            and self.end_line is not None
            and self.end_line < self.start_line
        ):
            raise ValidationError("endLine cannot be before startLine", field="endLine")

    def line_range(self) -> str | None:
        if self.start_line is not None and self.end_line is not None:
            return f"-L{self.start_line},{self.end_line}"
        if self.start_line is not None:
            return f"-L{self.start_line},+{BLAME_DEFAULT_SPAN}"
        if self.end_line is not None:
            return f"-L1,{self.end_line}"
        return None


class CreatePRRequest(OperationRequest, frozen=True, kw_only=True, rename="camel"):
    title: str
    body: str = ""
    base: str | None = None
    draft: bool = False
    labels: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        require(validate_title(self.title), "title")
        if self.base is not None:
            require(validate_ref(self.base), "base")
        for label in self.labels:
            require(validate_label(label), "labels")


def parse_request[R: OperationRequest](cls: type[R], params: Mapping[str, Any] | None) -> R:
    """Build a typed request from a loose parameter mapping.

    Scalar strings are coerced where the field type allows it ("true" for a
    bool, "5" for an int). Unknown keys are ignored.

    Raises:
        ValidationError: If a field is missing, mistyped, or fails its validator
    """
    data = {k: v for k, v in (params or {}).items() if v is not None}
    try:
        return msgspec.convert(data, cls, strict=False)
    except msgspec.ValidationError as e:
        # Prefer the validator's own reason over msgspec's wrapper text
        cause = e.__cause__ or e.__context__
        if isinstance(cause, ValidationError):
            raise cause from None
        raise ValidationError(str(e)) from e


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class GitOperations:
    """Executes typed requests against the runner under the configured policy.

    Holds no mutable state: config is frozen, the runner and audit log are
    safe to share, so one instance may serve concurrent callers.
    """

    __slots__ = ("audit", "config", "policy", "runner", "timeout_ms")

    def __init__(
        self,
        config: GitOpsConfig,
        runner: ProcessRunner | None = None,
        audit: AuditLog | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.config = config
        self.policy = PolicyEngine(config)
        self.runner: ProcessRunner = runner if runner is not None else LocalRunner()
        self.audit = audit
        self.timeout_ms = timeout_ms

    # -- plumbing -----------------------------------------------------------

    def _run(self, request: CommandRequest) -> ProcessResult:
        start_time = time.monotonic()
        result = self.runner.run(request)
        if self.audit is not None:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            self.audit.log_exec(request.argv(), result, duration_ms)
        return result

    def _git(self, cwd: str, subcommand: GitSubcommand, *args: str) -> ProcessResult:
        return self._run(
            CommandRequest(subcommand=subcommand, args=args, cwd=cwd, timeout_ms=self.timeout_ms)
        )

    @staticmethod
    def _check(result: ProcessResult, prefix: str = "") -> ProcessResult:
        """Raise ProcessError with the executable's own diagnostics on failure."""
        if not result.ok:
            raise ProcessError(result, prefix + (result.stderr or result.stdout))
        return result

    def _enforce(self, operation: str, request: PolicyRequest) -> PolicyDecision:
        try:
            return self.policy.enforce(request)
        except PolicyViolation as e:
            if self.audit is not None:
                self.audit.log_denial(
                    "policy_denied", operation, e.reason, rule=e.rule, branch=request.branch
                )
            raise

    def record_rejection(self, operation: str, error: ValidationError) -> None:
        """Audit a request that failed validation before reaching an operation."""
        if self.audit is not None:
            self.audit.log_denial("validation_failed", operation, error.reason, field=error.field)

    @staticmethod
    def _resolve_cwd(cwd: str | None) -> str:
        return cwd or os.getcwd()

    # -- repository helpers -------------------------------------------------

    def is_git_repo(self, cwd: str) -> bool:
        result = self._git(cwd, GitSubcommand.REV_PARSE, "--is-inside-work-tree")
        return result.ok and result.stdout.strip() == "true"

    def require_repo(self, cwd: str | None) -> str:
        """Resolve cwd and check it is inside a git work tree.

        Raises:
            GitEnvironmentError: If cwd is missing, git is missing, or cwd is
                not a work tree
        """
        resolved = self._resolve_cwd(cwd)
        if not os.path.isdir(resolved):
            raise GitEnvironmentError(f"working directory does not exist: {resolved}")
        result = self._git(resolved, GitSubcommand.REV_PARSE, "--is-inside-work-tree")
        if result.start_failed:
            raise GitEnvironmentError(f"git is not available: {result.stderr}")
        if not result.ok or result.stdout.strip() != "true":
            raise GitEnvironmentError(NOT_A_REPO)
        return resolved

    def current_branch(self, cwd: str) -> str | None:
        """Short name of the checked-out branch, or None on detached HEAD."""
        result = self._git(cwd, GitSubcommand.SYMBOLIC_REF, "--short", "HEAD")
        if result.ok:
            return result.stdout.strip() or None
        return None

    def describe_head(self, cwd: str) -> str | None:
        """Branch name, "(detached at <sha>)", or None if HEAD is unresolvable."""
        if branch := self.current_branch(cwd):
            return branch
        rev = self._git(cwd, GitSubcommand.REV_PARSE, "--short", "HEAD")
        if rev.ok:
            return f"(detached at {rev.stdout.strip()})"
        return None

    # -- operations ---------------------------------------------------------

    def status(self, request: StatusRequest) -> str:
        cwd = self.require_repo(request.cwd)
        branch = self.describe_head(cwd)

        result = self._check(
            self._git(cwd, GitSubcommand.STATUS, "--short" if request.short else "--long")
        )
        output = f"branch: {branch or 'unknown'}\n\n{result.stdout}"

        conflicts = self._git(cwd, GitSubcommand.DIFF, "--name-only", "--diff-filter=U")
        if conflicts.ok and conflicts.stdout.strip():
            output += f"\n\nmerge conflicts:\n{conflicts.stdout}"
        return output

    def diff(self, request: DiffRequest) -> str:
        cwd = self.require_repo(request.cwd)

        args: list[str] = []
        if request.staged:
            args.append("--cached")
        if request.name_only:
            args.append("--name-only")
        args.extend(ref for ref in (request.ref1, request.ref2) if ref is not None)
        if request.paths:
            args.extend(["--", *request.paths])

        result = self._check(self._git(cwd, GitSubcommand.DIFF, *args))
        if not result.stdout.strip():
            return "no changes"
        return truncate_output(filter_binary_diffs(result.stdout), MAX_DIFF_LINES, "diff")

    def log(self, request: LogRequest) -> str:
        cwd = self.require_repo(request.cwd)

        args = [f"--max-count={request.effective_count}"]
        if request.oneline:
            args.append("--oneline")
        else:
            args.extend(["--format=%h %an %ad %s", "--date=short"])
        if request.author is not None:
            args.append(f"--author={request.author}")
        if request.since is not None:
            args.append(f"--since={request.since}")
        if request.grep is not None:
            args.append(f"--grep={request.grep}")
        if request.ref is not None:
            args.append(request.ref)
        if request.paths:
            args.extend(["--", *request.paths])

        result = self._git(cwd, GitSubcommand.LOG, *args)
        if not result.ok:
            if "does not have any commits" in result.stderr:
                return "no commits yet"
            self._check(result)
        if not result.stdout.strip():
            return "no commits found"
        return truncate_output(result.stdout, MAX_LOG_ENTRIES, "log")

    def branch(self, request: BranchRequest) -> str:
        cwd = self.require_repo(request.cwd)
        name = request.name

        match request.action:
            case BranchAction.LIST:
                args = ["-v", "-a"] if request.all else ["-v"]
                result = self._check(self._git(cwd, GitSubcommand.BRANCH, *args))
                return result.stdout or "no branches"
            case BranchAction.CREATE:
                assert name is not None
                args = [name] if request.start_point is None else [name, request.start_point]
                self._check(self._git(cwd, GitSubcommand.BRANCH, *args))
                return f"created branch '{name}'"
            case BranchAction.SWITCH:
                assert name is not None
                self._check(self._git(cwd, GitSubcommand.SWITCH, name))
                return f"switched to '{name}'"
            case BranchAction.DELETE:
                assert name is not None
                self._enforce(
                    "branch.delete", PolicyRequest(kind=OperationKind.DELETE_BRANCH, branch=name)
                )
                self._check(self._git(cwd, GitSubcommand.BRANCH, "-d", name))
                return f"deleted branch '{name}'"

    def commit(self, request: CommitRequest) -> str:
        cwd = self.require_repo(request.cwd)

        branch = self.current_branch(cwd)
        self._enforce("commit", PolicyRequest(kind=OperationKind.COMMIT, branch=branch))

        if request.files:
            self._check(
                self._git(cwd, GitSubcommand.ADD, "--", *request.files), prefix="staging failed: "
            )

        message = f"{self.config.commit_prefix}{request.message}"
        with secure_payload(message, kind="commit-msg") as payload:
            args = ["-a"] if request.all else []
            args.extend(["--file", str(payload.path)])
            result = self._check(self._git(cwd, GitSubcommand.COMMIT, *args))
        return result.stdout

    def push(self, request: PushRequest) -> str:
        cwd = self.require_repo(request.cwd)

        remote = request.remote or self.config.default_remote
        branch = request.branch
        if branch is None and (branch := self.current_branch(cwd)) is not None:
            # git reads the pushed branch as a refspec: "+b" forces, "a:b" retargets
            try:
                require(validate_branch_name(branch), "branch")
            except ValidationError as e:
                self.record_rejection("push", e)
                raise

        args = ["--force"] if request.force else []
        decision = self._enforce(
            "push",
            PolicyRequest(
                kind=OperationKind.PUSH, branch=branch, force=request.force, args=tuple(args)
            ),
        )
        if decision.rewritten_args is not None:
            args = list(decision.rewritten_args)

        if request.set_upstream:
            args.append("--set-upstream")
        if request.dry_run:
            args.append("--dry-run")
        args.append(remote)
        if branch is not None:
            args.append(branch)

        result = self._check(self._git(cwd, GitSubcommand.PUSH, *args))
        # git push reports progress on stderr
        return result.stderr or result.stdout or "pushed successfully"

    def pull(self, request: GitPullRequest) -> str:
        cwd = self.require_repo(request.cwd)

        args = ["--rebase"] if request.rebase else []
        remote = request.remote
        if remote is None and request.branch is not None:
            # `git pull <branch>` would treat the branch as a repository
            remote = self.config.default_remote
        if remote is not None:
            args.append(remote)
        if request.branch is not None:
            args.append(request.branch)

        result = self._check(self._git(cwd, GitSubcommand.PULL, *args))
        return result.stdout or result.stderr or "up to date"

    def stash(self, request: StashRequest) -> str:
        cwd = self.require_repo(request.cwd)

        match request.action:
            case StashAction.LIST:
                result = self._check(self._git(cwd, GitSubcommand.STASH, "list"))
                return result.stdout or "no stashes"
            case StashAction.PUSH:
                args = ["push"]
                if request.message:
                    args.append(f"--message={request.message}")
                result = self._check(self._git(cwd, GitSubcommand.STASH, *args))
                return result.stdout or "stashed"
            case StashAction.POP:
                result = self._check(self._git(cwd, GitSubcommand.STASH, "pop", request.stash_ref))
                return result.stdout or "popped stash"
            case StashAction.DROP:
                result = self._check(
                    self._git(cwd, GitSubcommand.STASH, "drop", request.stash_ref)
                )
                return result.stdout or "dropped stash"
            case StashAction.SHOW:
                result = self._check(
                    self._git(cwd, GitSubcommand.STASH, "show", "-p", request.stash_ref)
                )
                return truncate_output(
                    filter_binary_diffs(result.stdout), MAX_DIFF_LINES, "stash diff"
                )

    def blame(self, request: BlameRequest) -> str:
        cwd = self.require_repo(request.cwd)

        args: list[str] = []
        if line_range := request.line_range():
            args.append(line_range)
        args.extend(["--", request.file])

        result = self._check(self._git(cwd, GitSubcommand.BLAME, *args))
        return truncate_output(result.stdout, MAX_DIFF_LINES, "blame")

    def create_pr(self, request: CreatePRRequest) -> str:
        cwd = self.require_repo(request.cwd)
        try:
            self.runner.check_executable(Executable.GH.value)
        except GitEnvironmentError as e:
            raise GitEnvironmentError(GH_INSTALL_HINT) from e

        with secure_payload(request.body, kind="pr-body", suffix=".md") as payload:
            args = ["create", "--title", request.title, "--body-file", str(payload.path)]
            if request.base is not None:
                args.extend(["--base", request.base])
            if request.draft:
                args.append("--draft")
            if request.labels:
                args.extend(["--label", ",".join(request.labels)])

            result = self._check(
                self._run(
                    CommandRequest(
                        subcommand=GhSubcommand.PR,
                        args=args,
                        cwd=cwd,
                        timeout_ms=self.timeout_ms,
                        executable=Executable.GH,
                    )
                )
            )
        return result.stdout or result.stderr

    def summary(self, cwd: str | None = None) -> str:
        """Quick overview: branch, short status, recent commits."""
        resolved = self.require_repo(cwd)

        branch = self.describe_head(resolved)
        status = self._git(resolved, GitSubcommand.STATUS, "--short")
        recent = self._git(
            resolved, GitSubcommand.LOG, f"--max-count={SUMMARY_LOG_COUNT}", "--oneline"
        )

        output = f"branch: {branch or 'unknown'}\n"
        if status.ok and status.stdout.strip():
            output += f"\nchanges:\n{status.stdout}"
        else:
            output += "\nworking tree clean"
        if recent.ok and recent.stdout.strip():
            output += f"\n\nrecent commits:\n{recent.stdout}"
        return output
