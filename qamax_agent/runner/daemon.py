"""Agent lifecycle: register, then heartbeat and poll until shutdown, then drain."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from qamax_agent.common.constants import (
    AGENT_NAME,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    VERSION,
)
from qamax_agent.common.logging import open_execution_journal
from qamax_agent.runner.capabilities import detect_capabilities, machine_id
from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.heartbeat import HeartbeatScheduler, MetricsProbe
from qamax_agent.runner.models import Capabilities, Identity, OnRegistered
from qamax_agent.runner.pipeline import ExecutionPipeline
from qamax_agent.runner.poller import AssignmentPoller
from qamax_agent.runner.registration import register_agent
from qamax_agent.runner.reporter import ResultReporter
from qamax_agent.runner.toolchain import Toolchain
from qamax_agent.runner.tracker import ExecutionTracker


@dataclass
class AgentSettings:
    """Everything `run` needs, already merged from flags, env and config."""

    cloud_url: str
    api_key: str = ""
    agent_id: str = ""
    registration_secret: str = ""
    poll_interval: float = DEFAULT_POLL_INTERVAL
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    max_concurrent: int = 0            # 0 = no cap
    log_dir: Path | None = None
    workspace_root: Path | None = None
    toolchain: Toolchain = field(default_factory=Toolchain)


class LocalAgent:
    """Wires the components together around one shared tracker and stop event.

    ``client``, ``capabilities``, ``machine`` and ``metrics`` are injectable
    for tests; by default they are built from the settings and the host.
    """

    def __init__(
        self,
        settings: AgentSettings,
        *,
        on_registered: OnRegistered | None = None,
        client: CloudClient | None = None,
        capabilities: Capabilities | None = None,
        machine: str | None = None,
        metrics: MetricsProbe | None = None,
        stop: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self.identity = Identity(settings.agent_id, settings.api_key)
        self.client = client or CloudClient(settings.cloud_url, self.identity)
        self.machine_id = machine if machine is not None else machine_id()
        self.capabilities = capabilities or detect_capabilities()
        self.tracker = ExecutionTracker(limit=settings.max_concurrent)
        self.stop = stop or threading.Event()
        self._on_registered = on_registered
        self._metrics = metrics
        self._log = structlog.get_logger("agent")

        journal = None
        if settings.log_dir is not None:
            journal = open_execution_journal(
                settings.log_dir, agent=AGENT_NAME, machine_id=self.machine_id,
            )
        self.pipeline = ExecutionPipeline(
            self.client,
            ResultReporter(self.client),
            self.tracker,
            toolchain=settings.toolchain,
            cancel=self.stop,
            workspace_root=settings.workspace_root,
            journal=journal,
        )
        self.poller = AssignmentPoller(
            self.client,
            self.tracker,
            self.pipeline.run,
            interval=settings.poll_interval,
            stop=self.stop,
            journal=journal,
        )

    def register(self) -> str:
        return register_agent(
            self.client,
            machine_id=self.machine_id,
            capabilities=self.capabilities,
            registration_secret=self.settings.registration_secret,
            on_registered=self._on_registered,
        )

    def run(self) -> None:
        """Block until :attr:`stop` is set and every in-flight execution has finished.

        Raises :class:`RegistrationError` if the handshake fails; nothing
        else is started in that case.
        """
        self._log.info("agent_starting", name=AGENT_NAME, version=VERSION, machine_id=self.machine_id)
        self._log.info("capabilities", detail=json.dumps(self.capabilities.to_dict()))

        self.register()

        with HeartbeatScheduler(
            self.client,
            self.tracker,
            interval=self.settings.heartbeat_interval,
            metrics=self._metrics,
            stop=self.stop,
        ):
            self.poller.run()
        self._log.info("shutting_down")
        self.drain()
        self._log.info("agent_stopped")

    def drain(self) -> None:
        active = self.tracker.count()
        if active:
            self._log.info("waiting_for_active_tests", count=active)
        self.tracker.wait_idle()

    def shutdown(self) -> None:
        self.stop.set()
