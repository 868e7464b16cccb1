"""One-shot registration handshake."""

from __future__ import annotations

import structlog

from qamax_agent.common.constants import AGENT_NAME, VERSION
from qamax_agent.common.http import CloudAPIError
from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.models import (
    Capabilities,
    OnRegistered,
    RegistrationError,
    RegistrationRequest,
)

_log = structlog.get_logger("registration")


def register_agent(
    client: CloudClient,
    *,
    machine_id: str,
    capabilities: Capabilities,
    registration_secret: str = "",
    on_registered: OnRegistered | None = None,
) -> str:
    """Register with the service and adopt the returned credentials.

    Any failure raises :class:`RegistrationError`. The callback receives the
    new agent ID and API key; an exception from it is logged and ignored,
    since losing persisted credentials only costs a re-registration.
    """
    request = RegistrationRequest(
        name=f"{AGENT_NAME} ({machine_id})",
        machine_id=machine_id,
        capabilities=capabilities,
        version=VERSION,
        api_key=client.identity.api_key,
        registration_secret=registration_secret,
    )
    try:
        response = client.register(request)
    except CloudAPIError as exc:
        raise RegistrationError(f"registration failed: {exc}") from exc

    client.identity.adopt(response.agent_id, response.api_key)
    if not client.identity.registered:
        raise RegistrationError("registration response did not include agent credentials")

    agent_id, api_key = client.identity.snapshot()
    _log.info("agent_registered", agent_id=agent_id)

    if on_registered is not None:
        try:
            on_registered(agent_id, api_key)
        except Exception as exc:
            _log.warning("credentials_not_saved", error=str(exc))
    return agent_id
