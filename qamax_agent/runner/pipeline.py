"""Per-assignment execution pipeline.

Steps, strictly in order for one assignment:
  1. Resolve test code (inline, else fetched by script ID)
  2. Provision an ephemeral workspace (removed on every exit path)
  3. Report "started"
  4. Write the test, package manifest and runner config
  5. Install dependencies (fatal on failure)
  6. Install the browser engine (best-effort)
  7. Run the tests under the run timeout / shutdown signal
  8. Collect screenshots and video
  9. Report the result and final status
 10. Release the tracker claim
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import structlog

from qamax_agent.common.constants import LOG_PREVIEW_BYTES
from qamax_agent.runner.artifacts import collect_artifacts
from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.models import (
    STATUS_STARTED,
    Assignment,
    ExecutionResult,
    ToolError,
)
from qamax_agent.runner.reporter import ResultReporter
from qamax_agent.runner.toolchain import Toolchain, check_tool, run_tool
from qamax_agent.runner.tracker import ExecutionTracker
from qamax_agent.runner.workspace import RunSettings, Workspace

NO_CODE_MESSAGE = "No test code provided"


def preview(text: str, limit: int = LOG_PREVIEW_BYTES) -> str:
    """First *limit* bytes of *text*, cut on a character boundary."""
    return text.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


class ExecutionPipeline:
    """Executes assignments; one :meth:`run` call per claimed assignment.

    The instance holds only shared collaborators, so a single pipeline can
    serve any number of concurrent ``run`` calls on separate threads.
    """

    def __init__(
        self,
        client: CloudClient,
        reporter: ResultReporter,
        tracker: ExecutionTracker,
        *,
        toolchain: Toolchain | None = None,
        cancel: threading.Event | None = None,
        workspace_root: Path | None = None,
        journal: structlog.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._reporter = reporter
        self._tracker = tracker
        self._toolchain = toolchain or Toolchain()
        # Root shutdown signal; set means "stop running tools now"
        self._cancel = cancel or threading.Event()
        self._workspace_root = workspace_root
        self._journal = journal
        self._log = structlog.get_logger("pipeline")

    def run(self, assignment: Assignment) -> ExecutionResult:
        """Execute one claimed assignment and release its claim, whatever happens."""
        log = self._log.bind(assignment_id=assignment.id)
        start = time.monotonic()
        self._record("execution_started", assignment_id=assignment.id)
        result = ExecutionResult.failure("Agent error: execution did not finish")
        try:
            result = self._execute(assignment, log)
        except Exception as exc:
            log.exception("pipeline_crashed")
            result = self._finish(assignment.id, ExecutionResult.failure(f"Agent error: {exc}"))
        finally:
            self._tracker.release(assignment.id)
            self._record(
                "execution_finished",
                assignment_id=assignment.id,
                success=result.success,
                duration_seconds=round(time.monotonic() - start, 1),
            )
        return result

    def _record(self, event: str, **fields) -> None:  # noqa: ANN003
        if self._journal is not None:
            self._journal.info(event, **fields)

    def _finish(self, assignment_id: str, result: ExecutionResult) -> ExecutionResult:
        self._reporter.report(assignment_id, result)
        return result

    def resolve_code(self, assignment: Assignment, log: structlog.BoundLogger) -> str:
        if assignment.code:
            return assignment.code
        if not assignment.script_id:
            return ""
        try:
            return self._client.fetch_script_code(assignment.script_id)
        except Exception as exc:
            log.warning("script_fetch_failed", script_id=assignment.script_id, error=str(exc))
            return ""

    def _execute(self, assignment: Assignment, log: structlog.BoundLogger) -> ExecutionResult:
        code = self.resolve_code(assignment, log)
        if not code:
            log.error("no_test_code", script_id=assignment.script_id or None)
            return self._finish(assignment.id, ExecutionResult.failure(NO_CODE_MESSAGE))

        try:
            workspace = Workspace.create(assignment.id, self._workspace_root)
        except OSError as exc:
            log.error("workspace_create_failed", error=str(exc))
            return self._finish(
                assignment.id, ExecutionResult.failure(f"Failed to create workspace: {exc}"),
            )

        with workspace:
            log.info("executing", script_id=assignment.script_id or None, workspace=str(workspace.path))
            return self._execute_in(workspace, assignment, code, log)

    def _execute_in(
        self,
        workspace: Workspace,
        assignment: Assignment,
        code: str,
        log: structlog.BoundLogger,
    ) -> ExecutionResult:
        aid = assignment.id
        tools = self._toolchain
        self._reporter.update_status(aid, STATUS_STARTED)

        settings = RunSettings.for_assignment(assignment)
        log.info(
            "run_settings",
            browser=settings.project,
            device=settings.device,
            headless=settings.headless,
            viewport=f"{settings.width}x{settings.height}",
        )
        try:
            workspace.write_test(code)
            workspace.write_manifest(aid)
            workspace.write_runner_config(settings)
        except OSError as exc:
            return self._finish(aid, ExecutionResult.failure(f"Failed to write workspace files: {exc}"))

        log.info("installing_dependencies")
        try:
            check_tool(
                tools.install_cmd(), workspace.path,
                timeout=tools.install_timeout, cancel=self._cancel,
            )
        except ToolError as exc:
            log.error("dependency_install_failed", error=preview(str(exc)))
            return self._finish(aid, ExecutionResult.failure(f"Dependency installation failed: {exc}"))

        log.info("installing_browser", browser=settings.project)
        try:
            check_tool(
                tools.browser_install_cmd(settings.project), workspace.path,
                timeout=tools.install_timeout, cancel=self._cancel,
            )
        except ToolError as exc:
            # The engine may already be cached; the run itself will tell
            log.warning("browser_install_failed", browser=settings.project, error=preview(str(exc)))

        log.info("running_tests", project=settings.project)
        try:
            run = run_tool(
                tools.test_cmd(settings.project), workspace.path,
                timeout=tools.run_timeout, cancel=self._cancel,
            )
        except ToolError as exc:
            return self._finish(aid, ExecutionResult.failure(f"Test runner failed to start: {exc}"))

        if run.stdout:
            log.info("runner_stdout", preview=preview(run.stdout))
        if run.stderr:
            log.info("runner_stderr", preview=preview(run.stderr))

        errors = run.stderr
        if run.timed_out:
            log.warning("run_timed_out", timeout_seconds=tools.run_timeout)
            errors += f"\nTest run timed out after {tools.run_timeout:g}s"
        elif run.cancelled:
            log.warning("run_cancelled")
            errors += "\nTest run cancelled by agent shutdown"

        artifacts = collect_artifacts(workspace.artifact_dir)
        log.info(
            "artifacts_collected",
            screenshots=len(artifacts.screenshots),
            video=artifacts.video is not None,
        )

        result = ExecutionResult(
            success=run.ok,
            message=run.stdout,
            output=run.stdout,
            errors=errors,
            artifacts=artifacts,
        )
        return self._finish(aid, result)
