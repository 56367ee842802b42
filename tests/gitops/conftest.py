# tests/gitops/conftest.py
"""
Shared pytest fixtures for gitops tests.

- isolate_git_config: keeps the user's git config (signing, hooks) out of tests
- worktree: a real git repository with one commit on "main"
- FakeRunner: records CommandRequests and replays scripted results
"""

import subprocess
from collections.abc import Callable

import pytest

from gitops.commands import CommandRequest
from gitops.errors import GitEnvironmentError
from gitops.runtime import ProcessResult


@pytest.fixture(autouse=True)
def isolate_git_config(monkeypatch):
    """Isolate tests from user's global git config.

    Prevents GPG signing, custom hooks, and other user config
    from affecting test execution.
    """
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")
    monkeypatch.setenv("GIT_CONFIG_SYSTEM", "/dev/null")
    monkeypatch.delenv("GITOPS_CONFIG_FILE", raising=False)
    monkeypatch.setenv("GITOPS_AUDIT_FILE", "")


def git_cmd(cwd, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout


@pytest.fixture
def worktree(tmp_path):
    """Create a git repo on branch main with one commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git_cmd(repo, "init", "--initial-branch=main")
    git_cmd(repo, "config", "user.email", "test@test.com")
    git_cmd(repo, "config", "user.name", "Test")
    git_cmd(repo, "config", "commit.gpgsign", "false")
    (repo / "file.txt").write_text("content\n")
    git_cmd(repo, "add", "-A")
    git_cmd(repo, "commit", "-m", "initial")
    return repo


@pytest.fixture
def feature_worktree(worktree):
    """Worktree checked out on feature/x."""
    git_cmd(worktree, "switch", "-c", "feature/x")
    return worktree


def ok(stdout: str = "", stderr: str = "") -> ProcessResult:
    return ProcessResult(exit_code=0, stdout=stdout, stderr=stderr)


def failed(stderr: str, exit_code: int = 128) -> ProcessResult:
    return ProcessResult(exit_code=exit_code, stdout="", stderr=stderr)


class FakeRunner:
    """ProcessRunner double.

    Results are chosen by handler(request); the default answers the repo
    checks as a work tree on branch "feature/x" and succeeds everything else.
    """

    def __init__(
        self,
        handler: Callable[[CommandRequest], ProcessResult | None] | None = None,
        branch: str | None = "feature/x",
        gh_available: bool = True,
    ):
        self.requests: list[CommandRequest] = []
        self.handler = handler
        self.branch = branch
        self.gh_available = gh_available
        self.payloads: list[str] = []

    def run(self, request: CommandRequest) -> ProcessResult:
        self.requests.append(request)
        # Capture payload contents while the file still exists
        for flag in ("--file", "--body-file"):
            if flag in request.args:
                path = request.args[request.args.index(flag) + 1]
                with open(path, encoding="utf-8", newline="") as f:
                    self.payloads.append(f.read())
        if self.handler is not None:
            result = self.handler(request)
            if result is not None:
                return result
        args = request.args
        if request.subcommand.value == "rev-parse" and args == ("--is-inside-work-tree",):
            return ok("true\n")
        if request.subcommand.value == "symbolic-ref":
            if self.branch is None:
                return failed("fatal: ref HEAD is not a symbolic ref")
            return ok(self.branch + "\n")
        if request.subcommand.value == "rev-parse" and args == ("--short", "HEAD"):
            return ok("abc1234\n")
        return ok()

    def check_executable(self, name: str) -> None:
        if name == "gh" and not self.gh_available:
            raise GitEnvironmentError("gh not found in PATH")

    def argvs(self) -> list[list[str]]:
        return [r.argv() for r in self.requests]

    def find(self, subcommand: str) -> CommandRequest:
        for request in self.requests:
            if request.subcommand.value == subcommand:
                return request
        raise AssertionError(f"no {subcommand} request in {self.argvs()}")


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_ops():
    """Factory for GitOperations over a FakeRunner with config overrides."""
    from gitops.config import GitOpsConfig
    from gitops.operations import GitOperations

    def _make(runner=None, audit=None, **config):
        return GitOperations(GitOpsConfig(**config), runner=runner or FakeRunner(), audit=audit)

    return _make
