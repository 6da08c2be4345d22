import subprocess

import pytest

import mgmt_run
from mgmt_run import (
    CommandFailed,
    MissingCommand,
    TaskError,
    format_command,
    require_commands,
    run_command,
)


def test_format_command_quotes_and_env():
    assert format_command(["kubectl", "apply", "-f", "a b.yaml"]) == "kubectl apply -f 'a b.yaml'"
    assert format_command(["./create.sh"], env={"NAME": "mgmt1"}) == "NAME=mgmt1 ./create.sh"


def test_run_command_success(fake_run, capsys):
    result = run_command(["kustomize", "build", "src"])
    assert result.returncode == 0
    assert fake_run.calls == [["kustomize", "build", "src"]]
    assert "$ kustomize build src" in capsys.readouterr().out


def test_run_command_raises_with_exit_code(fake_run):
    fake_run.fail(["anthoscli"], returncode=4)
    with pytest.raises(CommandFailed) as exc_info:
        run_command(["anthoscli", "apply", "-f", "build"])
    assert exc_info.value.exit_code == 4
    assert exc_info.value.cmd == ["anthoscli", "apply", "-f", "build"]


def test_run_command_unchecked_failure(fake_run):
    fake_run.fail(["gcloud"], returncode=1)
    result = run_command(["gcloud", "container", "clusters", "delete", "x"], check=False)
    assert result.returncode == 1


def test_run_command_merges_environment(fake_run, monkeypatch):
    monkeypatch.setenv("HOME", "/home/test")
    run_command(["./create.sh"], env={"NAME": "mgmt1"})
    env = fake_run.envs[0]
    assert env["NAME"] == "mgmt1"
    assert env["HOME"] == "/home/test"


def test_run_command_dry_run(fake_run, capsys):
    result = run_command(["kubectl", "apply", "-f", "x"], dry_run=True)
    assert result.returncode == 0
    assert fake_run.calls == []
    assert "[DRY-RUN] kubectl apply -f x" in capsys.readouterr().out


def test_run_command_missing_binary(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError(2, "No such file")
    monkeypatch.setattr(mgmt_run.subprocess, "run", missing)
    with pytest.raises(MissingCommand) as exc_info:
        run_command(["/pkg/hack/create_context.sh"])
    assert exc_info.value.exit_code == 127


def test_run_command_not_executable(monkeypatch):
    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied")
    monkeypatch.setattr(mgmt_run.subprocess, "run", denied)
    with pytest.raises(TaskError) as exc_info:
        run_command(["/pkg/hack/create_context.sh"])
    assert exc_info.value.exit_code == 126


def test_run_command_prints_captured_stderr(monkeypatch, capsys):
    monkeypatch.setattr(
        mgmt_run.subprocess, "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="boom\n"),
    )
    with pytest.raises(CommandFailed):
        run_command(["kubectl", "get", "pods"], capture_output=True)
    assert "boom" in capsys.readouterr().err


def test_require_commands(monkeypatch):
    monkeypatch.setattr(mgmt_run.shutil, "which", lambda cmd: "/bin/x" if cmd == "kubectl" else None)
    require_commands(["kubectl"])
    with pytest.raises(MissingCommand, match="gcloud"):
        require_commands(["kubectl", "gcloud"])


def test_signal_killed_command_reports_shell_exit_code(fake_run):
    fake_run.fail(["kustomize"], returncode=-15)
    with pytest.raises(CommandFailed) as exc_info:
        run_command(["kustomize", "build", "src"])
    assert exc_info.value.returncode == -15
    assert exc_info.value.exit_code == 143
