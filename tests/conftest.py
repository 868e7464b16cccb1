from __future__ import annotations

import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

# Ensure `import qamax_agent...` works when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from qamax_agent.common.http import CloudAPIError  # noqa: E402
from qamax_agent.runner.client import CloudClient  # noqa: E402
from qamax_agent.runner.models import (  # noqa: E402
    ExecutionResult,
    HeartbeatRequest,
    Identity,
    RegistrationRequest,
    RegistrationResponse,
)
from qamax_agent.runner.toolchain import Toolchain  # noqa: E402


def py(code: str) -> tuple[str, ...]:
    """Command prefix running *code* with the current interpreter."""
    return (sys.executable, "-c", textwrap.dedent(code))


TOOL_OK = py("print('added 3 packages')")
TOOL_FAIL = py(
    """
    import sys
    print('npm ERR! network unreachable')
    sys.exit(1)
    """
)

# Echoes the generated config and test file, then leaves Playwright-like artifacts
RUNNER_OK = py(
    """
    import pathlib, sys
    print(pathlib.Path('playwright.config.js').read_text())
    print(pathlib.Path('test.spec.js').read_text())
    print('argv:', ' '.join(sys.argv[1:]))
    out = pathlib.Path('test-results', 'example-chromium')
    out.mkdir(parents=True)
    (out / 'test-finished-1.png').write_bytes(b'png-bytes')
    (out / 'video.webm').write_bytes(b'webm-bytes')
    print('1 passed')
    """
)
RUNNER_FAIL = py(
    """
    import sys
    print('1 failed')
    sys.stderr.write('expect(received).toBe(expected)')
    sys.exit(1)
    """
)
RUNNER_HANG = py("import time; time.sleep(60)")


def make_toolchain(
    *,
    install=TOOL_OK,
    browser_install=TOOL_OK,
    test=RUNNER_OK,
    install_timeout: float = 30,
    run_timeout: float = 30,
) -> Toolchain:
    return Toolchain(
        install=tuple(install),
        browser_install=tuple(browser_install),
        test=tuple(test),
        install_timeout=install_timeout,
        run_timeout=run_timeout,
    )


class FakeCloud(CloudClient):
    """In-memory stand-in for the orchestration service.

    Every call is recorded; names added to ``fail`` make the matching
    endpoint raise :class:`CloudAPIError`.
    """

    def __init__(self, identity: Identity | None = None) -> None:
        super().__init__("http://cloud.test", identity or Identity("agent-1", "key-1"))
        self.lock = threading.Lock()
        self.fail: set[str] = set()
        self.pending: list = []
        self.scripts: dict[str, str] = {}
        self.register_response = RegistrationResponse(agent_id="agent-1", api_key="key-1")
        self.registrations: list[RegistrationRequest] = []
        self.heartbeats: list[HeartbeatRequest] = []
        self.fetched: list[str] = []
        self.statuses: list[tuple[str, str]] = []
        self.results: dict[str, ExecutionResult] = {}
        self.polls = 0

    def _check(self, endpoint: str) -> None:
        if endpoint in self.fail:
            raise CloudAPIError(f"{endpoint} unavailable", status=503)

    def register(self, request: RegistrationRequest) -> RegistrationResponse:
        with self.lock:
            self.registrations.append(request)
        self._check("register")
        return self.register_response

    def send_heartbeat(self, heartbeat: HeartbeatRequest) -> None:
        self._auth()
        with self.lock:
            self.heartbeats.append(heartbeat)
        self._check("heartbeat")

    def pending_assignments(self):
        self._auth()
        with self.lock:
            self.polls += 1
        self._check("poll")
        # The service stops listing an assignment once it has a status
        with self.lock:
            reported = {aid for aid, _ in self.statuses}
        return [a for a in self.pending if a.id not in reported]

    def fetch_script_code(self, script_id: str) -> str:
        self._auth()
        with self.lock:
            self.fetched.append(script_id)
        self._check("script")
        return self.scripts.get(script_id, "")

    def update_status(self, assignment_id: str, status: str) -> None:
        self._auth()
        self._check("status")
        with self.lock:
            self.statuses.append((assignment_id, status))

    def post_result(self, assignment_id: str, result: ExecutionResult) -> None:
        self._auth()
        self._check("result")
        with self.lock:
            self.results[assignment_id] = result

    def statuses_for(self, assignment_id: str) -> list[str]:
        with self.lock:
            return [s for aid, s in self.statuses if aid == assignment_id]


def wait_until(predicate, timeout: float = 15.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root
