"""Tests for cli.py - argparse front-end."""

import json

import pytest

from gitops.cli import main

from .conftest import git_cmd


def test_status(worktree, capsys):
    main(["--cwd", str(worktree), "status", "--short"])

    assert capsys.readouterr().out.startswith("branch: main\n")


def test_log(worktree, capsys):
    main(["--cwd", str(worktree), "log", "--count", "5"])

    out = capsys.readouterr().out
    assert "initial" in out


def test_summary(worktree, capsys):
    main(["--cwd", str(worktree), "summary"])

    assert "working tree clean" in capsys.readouterr().out


def test_not_a_repo_exits_1(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--cwd", str(tmp_path), "status"])

    assert exc_info.value.code == 1
    assert "not a git repository" in capsys.readouterr().err


def test_tool_prints_json(worktree, capsys):
    main(["--cwd", str(worktree), "tool", "git_log", "--params", '{"count": 1, "oneline": true}'])

    response = json.loads(capsys.readouterr().out)
    assert response["status"] == "ok"
    assert response["data"]["text"].strip().endswith("initial")


def test_tool_error_exits_1(worktree, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(
            [
                "--cwd",
                str(worktree),
                "tool",
                "git_commit",
                "--params",
                '{"message": "direct to main"}',
            ]
        )

    assert exc_info.value.code == 1
    response = json.loads(capsys.readouterr().out)
    assert response["error_type"] == "policy_violation"
    assert git_cmd(worktree, "rev-list", "--count", "HEAD").strip() == "1"


def test_tool_params_from_stdin(worktree, capsys, monkeypatch):
    import io

    monkeypatch.setattr("sys.stdin", io.StringIO('{"action": "list"}'))

    main(["--cwd", str(worktree), "tool", "git_branch", "--params", "-"])

    assert "main" in json.loads(capsys.readouterr().out)["data"]["text"]


def test_tool_invalid_json(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["tool", "git_status", "--params", "{oops"])

    assert exc_info.value.code == 1
    assert "not valid JSON" in capsys.readouterr().err


def test_tools_lists_names(capsys):
    main(["tools"])

    names = capsys.readouterr().out.split()
    assert "git_status" in names
    assert "git_summary" in names


def test_config_honours_environment(capsys, monkeypatch):
    monkeypatch.setenv("GITOPS_ALLOW_FORCE_PUSH", "true")

    main(["config"])

    assert json.loads(capsys.readouterr().out)["allowForcePush"] is True


def test_bad_config_exits_1(tmp_path, capsys):
    path = tmp_path / "gitops.json"
    path.write_text("[]")

    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(path), "tools"])

    assert exc_info.value.code == 1
    assert "must contain a JSON object" in capsys.readouterr().err


def test_audit_tail(worktree, tmp_path, capsys, monkeypatch):
    audit_file = tmp_path / "audit.jsonl"
    monkeypatch.setenv("GITOPS_AUDIT_FILE", str(audit_file))

    main(["--cwd", str(worktree), "status"])
    capsys.readouterr()
    main(["audit", "--tail", "2"])

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert len(events) == 2
    assert all(e["event_type"] == "exec" for e in events)


def test_audit_disabled(capsys):
    with pytest.raises(SystemExit):
        main(["audit"])

    assert "audit log is disabled" in capsys.readouterr().err


def test_audit_event_type_filter(worktree, tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("GITOPS_AUDIT_FILE", str(tmp_path / "audit.jsonl"))

    with pytest.raises(SystemExit):
        main(["--cwd", str(worktree), "tool", "git_branch", "--params", '{"action": "bogus"}'])
    main(["--cwd", str(worktree), "status"])
    capsys.readouterr()
    main(["audit", "--event-type", "validation_failed"])

    (event,) = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert event["event_type"] == "validation_failed"
    assert event["operation"] == "git_branch"
