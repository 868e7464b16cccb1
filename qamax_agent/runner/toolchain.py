"""External tool invocation: package manager, browser installer, test runner."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from qamax_agent.common.constants import INSTALL_TIMEOUT_SECS, RUN_TIMEOUT_SECS
from qamax_agent.runner.models import ToolError

_WAIT_SLICE = 0.25  # seconds between cancellation checks
_REAP_TIMEOUT = 5.0  # seconds to drain pipes after a kill
_SECRET_ENV_PREFIX = "QAMAX_"
_POSIX = os.name == "posix"


@dataclass(frozen=True)
class Toolchain:
    """Command prefixes for the three external tools a pipeline runs."""

    install: tuple[str, ...] = ("npm", "install")
    browser_install: tuple[str, ...] = ("npx", "playwright", "install")
    test: tuple[str, ...] = ("npx", "playwright", "test")
    install_timeout: float = INSTALL_TIMEOUT_SECS
    run_timeout: float = RUN_TIMEOUT_SECS

    def install_cmd(self) -> list[str]:
        return list(self.install)

    def browser_install_cmd(self, project: str) -> list[str]:
        return [*self.browser_install, project]

    def test_cmd(self, project: str) -> list[str]:
        return [*self.test, "--project", project]


@dataclass(frozen=True)
class ToolResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not (self.timed_out or self.cancelled)


def child_env() -> dict[str, str]:
    """Environment for external tools, without the agent's own settings."""
    return {k: v for k, v in os.environ.items() if not k.startswith(_SECRET_ENV_PREFIX)}


def _kill_tree(proc: subprocess.Popen) -> tuple[bytes | None, bytes | None]:
    """Kill *proc* and its process group, then collect whatever output is left.

    A descendant that left the group can keep the pipes open; after
    ``_REAP_TIMEOUT`` its output is abandoned rather than waited for.
    """
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()
    try:
        return proc.communicate(timeout=_REAP_TIMEOUT)
    except subprocess.TimeoutExpired:
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()
        proc.wait()
        return None, None


def run_tool(
    cmd: Sequence[str],
    cwd: Path,
    *,
    timeout: float,
    cancel: threading.Event | None = None,
    merge_output: bool = False,
) -> ToolResult:
    """Run *cmd* in *cwd*, killing it at *timeout* or when *cancel* is set.

    Output is captured in full. A command that cannot be started raises
    :class:`ToolError`.
    """
    try:
        proc = subprocess.Popen(
            list(cmd),
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
            env=child_env(),
            # Own process group, so npx's node, workers and browsers die together
            start_new_session=_POSIX,
        )
    except OSError as exc:
        raise ToolError(f"{cmd[0]}: {exc}") from exc

    deadline = time.monotonic() + timeout
    timed_out = cancelled = False
    while True:
        try:
            out, err = proc.communicate(timeout=_WAIT_SLICE)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                cancelled = True
            elif time.monotonic() >= deadline:
                timed_out = True
            else:
                continue
            out, err = _kill_tree(proc)
            break

    return ToolResult(
        returncode=proc.returncode,
        stdout=(out or b"").decode("utf-8", errors="replace"),
        stderr=(err or b"").decode("utf-8", errors="replace"),
        timed_out=timed_out,
        cancelled=cancelled,
    )


def describe_failure(cmd: Sequence[str], result: ToolResult, timeout: float) -> str:
    if result.cancelled:
        return f"{cmd[0]}: cancelled by agent shutdown"
    if result.timed_out:
        return f"{cmd[0]}: timed out after {timeout:g}s"
    return f"exit status {result.returncode}"


def check_tool(
    cmd: Sequence[str],
    cwd: Path,
    *,
    timeout: float,
    cancel: threading.Event | None = None,
) -> str:
    """Run *cmd* with merged output; raise ToolError carrying that output on failure."""
    result = run_tool(cmd, cwd, timeout=timeout, cancel=cancel, merge_output=True)
    if not result.ok:
        raise ToolError(f"{describe_failure(cmd, result, timeout)}: {result.stdout}")
    return result.stdout
