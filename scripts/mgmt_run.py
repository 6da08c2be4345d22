"""
Command execution helpers for the management cluster tasks.

Wraps subprocess the same way for every task:
- Echoes each command before running it
- Streams tool output to the terminal (kustomize, anthoscli, kubectl, gcloud)
- Turns non-zero exit codes into CommandFailed so the runner can stop the chain
- Supports dry-run, where nothing is executed
"""

import os
import shlex
import shutil
import subprocess
import sys
from typing import Dict, List, Optional


def log_info(msg):
    """Print info message."""
    print(f"[INFO] {msg}")


def log_warn(msg):
    """Print warning message."""
    print(f"[WARN] {msg}", file=sys.stderr)


def log_error(msg):
    """Print error message."""
    print(f"[ERROR] {msg}", file=sys.stderr)


class TaskError(Exception):
    """Base error for the orchestrator. Carries the process exit code."""

    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class CommandFailed(TaskError):
    """An external command returned a non-zero exit code."""

    def __init__(self, cmd: List[str], returncode: int):
        # Killed by a signal: report 128+N like a shell does
        exit_code = 128 - returncode if returncode < 0 else returncode
        super().__init__(
            f"Command failed with exit code {returncode}: {shlex.join(cmd)}",
            exit_code=exit_code,
        )
        self.cmd = cmd
        self.returncode = returncode


class MissingCommand(TaskError):
    """A required external tool is not on PATH."""

    exit_code = 127


def check_command(cmd: str) -> bool:
    """Check if a command exists."""
    return shutil.which(cmd) is not None


def require_commands(commands) -> None:
    """Fail with MissingCommand if any of the tools is not installed."""
    missing = [cmd for cmd in commands if not check_command(cmd)]
    if missing:
        raise MissingCommand(
            f"{', '.join(missing)} not installed. Please install it first."
        )


def format_command(cmd: List[str], env: Optional[Dict[str, str]] = None) -> str:
    """Render a command the way it would be typed in a shell."""
    prefix = " ".join(f"{key}={shlex.quote(value)}" for key, value in (env or {}).items())
    command = shlex.join(cmd)
    return f"{prefix} {command}" if prefix else command


def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = False,
    env: Optional[Dict[str, str]] = None,
    dry_run: bool = False,
) -> subprocess.CompletedProcess:
    """Run a command and return the result.

    ``env`` holds extra variables layered on top of the current environment.
    With ``check`` a non-zero exit code raises CommandFailed.
    """
    if dry_run:
        print(f"[DRY-RUN] {format_command(cmd, env)}")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    print(f"$ {format_command(cmd, env)}")
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    try:
        result = subprocess.run(
            cmd,
            capture_output=capture_output,
            text=True,
            env=full_env,
        )
    except FileNotFoundError:
        raise MissingCommand(f"{cmd[0]} not found")
    except PermissionError:
        raise TaskError(f"{cmd[0]} is not executable", exit_code=126)
    if check and result.returncode != 0:
        if capture_output and result.stderr:
            print(result.stderr, end="", file=sys.stderr)
        raise CommandFailed(cmd, result.returncode)
    return result
