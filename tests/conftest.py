import subprocess
from pathlib import Path

import pytest

import mgmt_run
from mgmt_config import Settings

SETTER_CONFIG = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: setters
data:
  name: {name}
  location: {location}
  gcloud.core.project: {project}
"""


class FakeRun:
    """Stands in for subprocess.run and records every command."""

    def __init__(self):
        self.calls = []
        self.envs = []
        self.handlers = []

    def on(self, prefix, handler):
        """Route commands starting with prefix to handler(cmd).

        handler returns a CompletedProcess, or an int return code.
        """
        self.handlers.append((list(prefix), handler))

    def fail(self, prefix, returncode=1):
        self.on(prefix, lambda cmd: returncode)

    def __call__(self, cmd, capture_output=False, text=True, env=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        self.envs.append(env)
        for prefix, handler in self.handlers:
            if cmd[:len(prefix)] == prefix:
                result = handler(cmd)
                if isinstance(result, int):
                    return subprocess.CompletedProcess(cmd, result, stdout="", stderr="")
                return result
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    def commands(self, tool):
        return [cmd for cmd in self.calls if cmd and cmd[0] == tool]


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(mgmt_run.subprocess, "run", fake)
    monkeypatch.setattr(mgmt_run.shutil, "which", lambda cmd: f"/usr/bin/{cmd}")
    return fake


def write_setter_config(package_dir: Path, name="mgmt1", location="us-central1", project="my-proj"):
    path = package_dir / "kptconfig" / "kpt-setter-config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SETTER_CONFIG.format(name=name, location=location, project=project))
    return path


@pytest.fixture
def package_dir(tmp_path):
    package = tmp_path / "package"
    write_setter_config(package)
    return package


@pytest.fixture
def settings(package_dir, tmp_path):
    return Settings.from_env(
        environ={},
        package_dir=str(package_dir),
        build_dir=str(tmp_path / "build"),
    )
