"""
Tool surface: routes {"tool": name, "params": {...}} requests to operations.

Responses mirror a JSON-RPC style envelope:
    {"status": "ok", "data": {"text": "..."}}
    {"status": "error", "error_type": "policy_violation", "message": "..."}
"""

from collections.abc import Callable, Mapping
from typing import Any, Final

from .errors import PolicyViolation, ValidationError, error_kind
from .operations import (
    BlameRequest,
    BranchRequest,
    CommitRequest,
    CreatePRRequest,
    DiffRequest,
    GitOperations,
    GitPullRequest,
    LogRequest,
    OperationRequest,
    PushRequest,
    StashRequest,
    StatusRequest,
    parse_request,
)

# tool name -> (request type, bound-method name on GitOperations)
TOOLS: Final[dict[str, tuple[type[OperationRequest], str]]] = {
    "git_status": (StatusRequest, "status"),
    "git_diff": (DiffRequest, "diff"),
    "git_log": (LogRequest, "log"),
    "git_branch": (BranchRequest, "branch"),
    "git_commit": (CommitRequest, "commit"),
    "git_push": (PushRequest, "push"),
    "git_pull": (GitPullRequest, "pull"),
    "git_stash": (StashRequest, "stash"),
    "git_blame": (BlameRequest, "blame"),
    "git_pr": (CreatePRRequest, "create_pr"),
}

SUMMARY_TOOL: Final[str] = "git_summary"


def _ok(text: str) -> dict[str, Any]:
    return {"status": "ok", "data": {"text": text}}


def _error(exc: BaseException) -> dict[str, Any]:
    response: dict[str, Any] = {
        "status": "error",
        "error_type": error_kind(exc),
        "message": str(exc),
    }
    match exc:
        case PolicyViolation(rule=rule, override=override):
            response["rule"] = rule
            if override:
                response["override"] = override
        case ValidationError(field=field) if field:
            response["field"] = field
    return response


def tool_names() -> list[str]:
    return [*TOOLS, SUMMARY_TOOL]


def dispatch(request: Mapping[str, Any], operations: GitOperations) -> dict[str, Any]:
    """Run one tool request and return a response envelope.

    Every failure becomes an error envelope; errors outside the gitops
    hierarchy are reported as "internal_error".
    """
    tool = request.get("tool")
    params = request.get("params") or {}

    if not isinstance(params, Mapping):
        return {
            "status": "error",
            "error_type": "validation_error",
            "message": "params must be an object",
        }

    match tool:
        case None:
            return {"status": "error", "error_type": "validation_error", "message": "Missing tool"}
        case str() if tool == SUMMARY_TOOL:
            return _run(lambda: operations.summary(params.get("cwd")))
        case str() if tool in TOOLS:
            request_type, method_name = TOOLS[tool]
            try:
                typed = parse_request(request_type, params)
            except ValidationError as e:
                operations.record_rejection(tool, e)
                return _error(e)
            method: Callable[[Any], str] = getattr(operations, method_name)
            return _run(lambda: method(typed))
        case _:
            return {
                "status": "error",
                "error_type": "validation_error",
                "message": f"Unknown tool: {tool}",
            }


def _run(fn: Callable[[], str]) -> dict[str, Any]:
    try:
        return _ok(fn())
    except Exception as e:
        return _error(e)
