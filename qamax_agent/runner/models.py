"""Wire schemas and in-process data model for the agent."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

# Assignment status values accepted by the status endpoint
STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Agent status values sent with heartbeats
AGENT_ONLINE = "online"
AGENT_BUSY = "busy"


class RegistrationError(RuntimeError):
    """Registration failed; the agent must not start serving."""


class ToolError(RuntimeError):
    """An external tool could not be run to a zero exit status.

    The message ends with the tool's combined output.
    """


def _as_id(value: Any) -> str:
    """Render a JSON id (string or number) the way the service prints it."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


OnRegistered = Callable[[str, str], None]


class Identity:
    """Agent ID and API key, fixed once registration succeeds.

    Readers on other threads see either the pre-registration values or the
    adopted ones, never a mix.
    """

    def __init__(self, agent_id: str = "", api_key: str = "") -> None:
        self._lock = threading.Lock()
        self._agent_id = agent_id
        self._api_key = api_key

    @property
    def agent_id(self) -> str:
        with self._lock:
            return self._agent_id

    @property
    def api_key(self) -> str:
        with self._lock:
            return self._api_key

    def snapshot(self) -> tuple[str, str]:
        with self._lock:
            return self._agent_id, self._api_key

    @property
    def registered(self) -> bool:
        agent_id, api_key = self.snapshot()
        return bool(agent_id and api_key)

    def adopt(self, agent_id: str, api_key: str) -> None:
        """Take over the credentials returned by registration."""
        with self._lock:
            if agent_id:
                self._agent_id = agent_id
            if api_key:
                self._api_key = api_key


@dataclass(frozen=True)
class Assignment:
    """A unit of work handed out by the orchestration service."""

    id: str
    script_id: str = ""
    code: str = ""
    framework: str = "playwright"
    browser: str = ""
    headless: bool = False
    viewport_width: int = 0
    viewport_height: int = 0
    custom_url: str = ""
    execution_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Assignment:
        return cls(
            id=_as_id(data.get("id")),
            script_id=_as_id(data.get("script_id")),
            code=data.get("code") or "",
            framework=data.get("framework") or "playwright",
            browser=data.get("browser") or "",
            headless=bool(data.get("headless", False)),
            viewport_width=_as_int(data.get("viewport_width")),
            viewport_height=_as_int(data.get("viewport_height")),
            custom_url=data.get("custom_url") or "",
            execution_id=_as_id(data.get("execution_id")),
        )


@dataclass(frozen=True)
class Capabilities:
    """Static description of what this machine can run."""

    platform: str
    platform_version: str
    architecture: str
    browsers: list[str]
    playwright_available: bool
    frameworks: list[str] = field(default_factory=lambda: ["playwright"])
    execution_type: str = "local_agent"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SystemMetrics:
    cpu_percent: float
    memory_percent: float
    active_tests: int

    def to_dict(self) -> dict:
        return asdict(self)


# ── Request/response bodies, one per endpoint ────────────────────────────────


@dataclass(frozen=True)
class RegistrationRequest:
    name: str
    machine_id: str
    capabilities: Capabilities
    version: str
    api_key: str
    registration_secret: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "machine_id": self.machine_id,
            "capabilities": self.capabilities.to_dict(),
            "version": self.version,
            "api_key": self.api_key,
            "registration_secret": self.registration_secret,
        }


@dataclass(frozen=True)
class RegistrationResponse:
    agent_id: str
    api_key: str

    @classmethod
    def from_dict(cls, data: dict) -> RegistrationResponse:
        return cls(
            agent_id=_as_id(data.get("agent_id")),
            api_key=str(data.get("api_key") or ""),
        )


@dataclass(frozen=True)
class HeartbeatRequest:
    status: str
    active_tests: list[str]
    system_metrics: SystemMetrics | None = None

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"status": self.status, "active_tests": list(self.active_tests)}
        if self.system_metrics is not None:
            body["system_metrics"] = self.system_metrics.to_dict()
        return body


@dataclass(frozen=True)
class FileArtifact:
    filename: str
    data: str                    # base64-encoded file contents

    def to_dict(self) -> dict:
        return {"filename": self.filename, "data": self.data}


@dataclass
class Artifacts:
    screenshots: list[FileArtifact] = field(default_factory=list)
    video: FileArtifact | None = None

    def to_dict(self) -> dict:
        return {
            "screenshots": [s.to_dict() for s in self.screenshots],
            "video": self.video.to_dict() if self.video else None,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one assignment as delivered to the result endpoint."""

    success: bool
    message: str
    output: str = ""
    errors: str = ""
    artifacts: Artifacts | None = None

    @classmethod
    def failure(cls, message: str) -> ExecutionResult:
        return cls(success=False, message=message)

    @property
    def final_status(self) -> str:
        return STATUS_COMPLETED if self.success else STATUS_FAILED

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "output": self.output,
            "errors": self.errors,
            "artifacts": self.artifacts.to_dict() if self.artifacts else None,
        }
