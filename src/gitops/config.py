"""
GitOpsConfig: process-wide, read-only policy configuration.

Resolved once at startup and passed by reference into every operation.
The struct is frozen; no operation can mutate it, so no locking is needed.

Precedence for load_config(): environment variables > JSON file > defaults.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import msgspec
from msgspec import Struct, field

from .errors import ConfigError
from .validate import Rejected, validate_remote_name

DEFAULT_PROTECTED_BRANCHES: Final[frozenset[str]] = frozenset({"main", "master"})

# Environment variable -> config key (camelCase wire name)
_ENV_OVERRIDES: Final[dict[str, str]] = {
    "GITOPS_ALLOW_FORCE_PUSH": "allowForcePush",
    "GITOPS_ALLOW_MAIN_COMMIT": "allowMainCommit",
    "GITOPS_DEFAULT_REMOTE": "defaultRemote",
    "GITOPS_COMMIT_PREFIX": "commitPrefix",
    "GITOPS_PROTECTED_BRANCHES": "protectedBranches",
}


class GitOpsConfig(Struct, frozen=True, rename="camel"):
    """Policy configuration.

    Wire names are camelCase (allowForcePush, protectedBranches, ...).
    Unrecognized keys are ignored on decode.
    """

    allow_force_push: bool = False
    allow_main_commit: bool = False
    default_remote: str = "origin"
    commit_prefix: str = ""
    protected_branches: frozenset[str] = field(default_factory=lambda: DEFAULT_PROTECTED_BRANCHES)

    def __post_init__(self) -> None:
        outcome = validate_remote_name(self.default_remote)
        if isinstance(outcome, Rejected):
            raise ConfigError(f"defaultRemote: {outcome.reason}")

    def is_protected(self, branch: str | None) -> bool:
        return branch is not None and branch in self.protected_branches


def resolve_config(raw: Mapping[str, Any] | None = None) -> GitOpsConfig:
    """Build a GitOpsConfig from a loosely-typed mapping.

    Missing or null keys fall back to defaults. Scalar strings such as
    "true" or "0" are coerced for boolean fields.

    Raises:
        ConfigError: If a known key has a value of the wrong shape
    """
    if not raw:
        return GitOpsConfig()

    data = {key: value for key, value in raw.items() if value is not None}
    try:
        return msgspec.convert(data, GitOpsConfig, strict=False)
    except msgspec.ValidationError as e:
        raise ConfigError(f"invalid gitops config: {e}") from e


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = msgspec.json.decode(path.read_bytes())
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except msgspec.DecodeError as e:
        raise ConfigError(f"config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, key in _ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        if key == "protectedBranches":
            overrides[key] = [b.strip() for b in value.split(",") if b.strip()]
        else:
            overrides[key] = value
    return overrides


def load_config(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> GitOpsConfig:
    """
    Load configuration for this process.

    Environment variables:
        GITOPS_CONFIG_FILE: JSON config file (used when path is None)
        GITOPS_ALLOW_FORCE_PUSH, GITOPS_ALLOW_MAIN_COMMIT: "true"/"false"
        GITOPS_DEFAULT_REMOTE, GITOPS_COMMIT_PREFIX: strings
        GITOPS_PROTECTED_BRANCHES: comma-separated branch names

    Raises:
        ConfigError: If the file cannot be read or a value is malformed
    """
    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    if path is None and (env_path := env.get("GITOPS_CONFIG_FILE")):
        path = Path(env_path)
    if path is not None:
        raw.update(_read_config_file(path))

    raw.update(_env_overrides(env))
    return resolve_config(raw)
