"""Best-effort delivery of assignment status transitions and results."""

from __future__ import annotations

import structlog

from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.models import ExecutionResult


class ResultReporter:
    """Posts to the status/result endpoints; failures are logged, never raised.

    There is no retry queue: if a post is lost, the service only learns that
    the assignment left this agent through the next heartbeat's active list.
    """

    def __init__(self, client: CloudClient) -> None:
        self._client = client
        self._log = structlog.get_logger("reporter")

    def update_status(self, assignment_id: str, status: str) -> bool:
        if not self._client.identity.registered:
            return False
        try:
            self._client.update_status(assignment_id, status)
        except Exception as exc:
            self._log.error(
                "status_update_failed",
                assignment_id=assignment_id,
                status=status,
                error=str(exc),
            )
            return False
        return True

    def report(self, assignment_id: str, result: ExecutionResult) -> bool:
        """Post the result, then the matching final status if the post succeeded."""
        if not self._client.identity.registered:
            return False
        try:
            self._client.post_result(assignment_id, result)
        except Exception as exc:
            self._log.error("result_report_failed", assignment_id=assignment_id, error=str(exc))
            return False
        self.update_status(assignment_id, result.final_status)
        self._log.info("result_reported", assignment_id=assignment_id, status=result.final_status)
        return True
