"""Typed client for the orchestration service's agent endpoints."""

from __future__ import annotations

from urllib.parse import quote

from qamax_agent.common.constants import API_KEY_HEADER, HTTP_TIMEOUT_SECS
from qamax_agent.common.http import CloudAPIError, http_get, http_post
from qamax_agent.runner.models import (
    Assignment,
    ExecutionResult,
    HeartbeatRequest,
    Identity,
    RegistrationRequest,
    RegistrationResponse,
)


class NotRegisteredError(CloudAPIError):
    """An authenticated endpoint was called before registration completed."""


def _seg(value: str) -> str:
    return quote(value, safe="")


class CloudClient:
    """One method per endpoint; every method raises :class:`CloudAPIError` on failure.

    All calls except :meth:`register` carry the agent API key header and
    require a registered :class:`Identity`.
    """

    def __init__(
        self,
        base_url: str,
        identity: Identity,
        *,
        timeout: float = HTTP_TIMEOUT_SECS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self._timeout = timeout

    def _auth(self) -> tuple[str, dict[str, str]]:
        agent_id, api_key = self.identity.snapshot()
        if not (agent_id and api_key):
            raise NotRegisteredError("agent not registered")
        return agent_id, {API_KEY_HEADER: api_key}

    def _agent_url(self, agent_id: str, path: str) -> str:
        return f"{self.base_url}/api/agent/{_seg(agent_id)}{path}"

    def register(self, request: RegistrationRequest) -> RegistrationResponse:
        data = http_post(
            f"{self.base_url}/api/agent/register",
            payload=request.to_dict(),
            timeout=self._timeout,
        )
        return RegistrationResponse.from_dict(data)

    def send_heartbeat(self, heartbeat: HeartbeatRequest) -> None:
        agent_id, headers = self._auth()
        http_post(
            self._agent_url(agent_id, "/heartbeat"),
            headers=headers,
            payload=heartbeat.to_dict(),
            timeout=self._timeout,
        )

    def pending_assignments(self) -> list[Assignment]:
        agent_id, headers = self._auth()
        data = http_get(
            self._agent_url(agent_id, "/assignments/pending"),
            headers=headers,
            timeout=self._timeout,
        )
        return [Assignment.from_dict(a) for a in data.get("assignments") or [] if isinstance(a, dict)]

    def fetch_script_code(self, script_id: str) -> str:
        _, headers = self._auth()
        data = http_get(
            f"{self.base_url}/api/automation/scripts/{_seg(script_id)}",
            headers=headers,
            timeout=self._timeout,
        )
        code = data.get("code")
        return code if isinstance(code, str) else ""

    def update_status(self, assignment_id: str, status: str) -> None:
        agent_id, headers = self._auth()
        http_post(
            self._agent_url(agent_id, f"/assignments/{_seg(assignment_id)}/status"),
            headers=headers,
            payload={"status": status},
            timeout=self._timeout,
        )

    def post_result(self, assignment_id: str, result: ExecutionResult) -> None:
        agent_id, headers = self._auth()
        http_post(
            self._agent_url(agent_id, f"/assignments/{_seg(assignment_id)}/result"),
            headers=headers,
            payload=result.to_dict(),
            timeout=self._timeout,
        )
