from __future__ import annotations

import base64
import os
import threading
import time
from pathlib import Path

import pytest
from conftest import (
    RUNNER_FAIL,
    RUNNER_HANG,
    TOOL_FAIL,
    FakeCloud,
    make_toolchain,
)

from qamax_agent.runner.models import Assignment
from qamax_agent.runner.pipeline import NO_CODE_MESSAGE, ExecutionPipeline, preview
from qamax_agent.runner.reporter import ResultReporter
from qamax_agent.runner.tracker import ExecutionTracker

# Forks a child that holds the output pipes, as npx does with node
RUNNER_FORKS = ("sh", "-c", "sleep 30; echo done")
posix_only = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX-only")


def _pipeline(cloud: FakeCloud, root: Path, tracker: ExecutionTracker | None = None, **kw):
    tracker = tracker or ExecutionTracker()
    cancel = kw.pop("cancel", None)
    pipeline = ExecutionPipeline(
        cloud,
        ResultReporter(cloud),
        tracker,
        toolchain=make_toolchain(**kw),
        cancel=cancel,
        workspace_root=root,
    )
    return pipeline, tracker


def _run(pipeline: ExecutionPipeline, tracker: ExecutionTracker, assignment: Assignment):
    assert tracker.try_claim(assignment.id)
    return pipeline.run(assignment)


def test_missing_code_fails_without_workspace(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="7"))

    assert not result.success
    assert result.message == NO_CODE_MESSAGE
    assert cloud.results["7"].message == NO_CODE_MESSAGE
    assert cloud.statuses_for("7") == ["failed"]
    assert list(workspace_root.iterdir()) == []
    assert tracker.count() == 0


def test_unknown_script_id_is_missing_code(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="9", script_id="nope"))

    assert cloud.fetched == ["nope"]
    assert result.message == NO_CODE_MESSAGE
    assert "started" not in cloud.statuses_for("9")


def test_script_fetch_failure_is_missing_code(cloud: FakeCloud, workspace_root: Path) -> None:
    cloud.fail.add("script")
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="9", script_id="s1"))

    assert result.message == NO_CODE_MESSAGE


def test_code_fetched_by_script_id(cloud: FakeCloud, workspace_root: Path) -> None:
    cloud.scripts["s1"] = "test('fetched', async () => {});"
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="8", script_id="s1"))

    assert result.success
    assert "test('fetched'" in result.output


def test_inline_code_wins_over_script_id(cloud: FakeCloud, workspace_root: Path) -> None:
    cloud.scripts["s1"] = "from-script"
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="8", script_id="s1", code="inline-code"))

    assert cloud.fetched == []
    assert "inline-code" in result.output


def test_end_to_end_firefox_run(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root)
    assignment = Assignment(
        id="1", code="t", browser="firefox", headless=True,
        viewport_width=800, viewport_height=600,
    )

    result = _run(pipeline, tracker, assignment)

    assert result.success
    assert "name: 'firefox'" in result.output
    assert "...devices['Desktop Firefox']" in result.output
    assert "headless: true" in result.output
    assert "viewport: { width: 800, height: 600 }" in result.output
    assert "baseURL: undefined" in result.output
    assert "argv: --project firefox" in result.output
    assert cloud.statuses_for("1") == ["started", "completed"]

    posted = cloud.results["1"]
    assert posted.success
    assert posted.output == result.output
    assert len(posted.artifacts.screenshots) == 1
    shot = posted.artifacts.screenshots[0]
    assert shot.filename == "test-finished-1.png"
    assert base64.b64decode(shot.data) == b"png-bytes"
    assert posted.artifacts.video.filename == "video.webm"

    assert list(workspace_root.iterdir()) == []
    assert tracker.count() == 0


def test_custom_url_is_quoted_in_config(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="2", code="t", custom_url="https://x.test"))

    assert 'baseURL: "https://x.test"' in result.output
    assert "name: 'chromium'" in result.output
    assert "viewport: { width: 1280, height: 720 }" in result.output


def test_dependency_install_failure_is_fatal(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, install=TOOL_FAIL)

    result = _run(pipeline, tracker, Assignment(id="3", code="t"))

    assert not result.success
    assert result.message.startswith("Dependency installation failed:")
    assert "npm ERR! network unreachable" in result.message
    assert result.artifacts is None
    assert cloud.statuses_for("3") == ["started", "failed"]
    assert list(workspace_root.iterdir()) == []


def test_missing_package_manager_is_install_failure(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(
        cloud, workspace_root, install=("qamax-no-such-tool-xyz", "install"),
    )

    result = _run(pipeline, tracker, Assignment(id="4", code="t"))

    assert result.message.startswith("Dependency installation failed:")
    assert tracker.count() == 0


def test_browser_install_failure_is_not_fatal(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, browser_install=TOOL_FAIL)

    result = _run(pipeline, tracker, Assignment(id="5", code="t"))

    assert result.success
    assert cloud.statuses_for("5") == ["started", "completed"]


def test_failing_run_reports_failed(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_FAIL)

    result = _run(pipeline, tracker, Assignment(id="6", code="t"))

    assert not result.success
    assert "1 failed" in result.output
    assert result.errors == "expect(received).toBe(expected)"
    assert result.artifacts.screenshots == []
    assert result.artifacts.video is None
    assert cloud.statuses_for("6") == ["started", "failed"]


def test_run_timeout_kills_runner(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_HANG, run_timeout=1)

    start = time.monotonic()
    result = _run(pipeline, tracker, Assignment(id="10", code="t"))

    assert time.monotonic() - start < 30
    assert not result.success
    assert "timed out after 1s" in result.errors
    assert list(workspace_root.iterdir()) == []


@posix_only
def test_run_timeout_kills_runner_children(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_FORKS, run_timeout=1)

    start = time.monotonic()
    result = _run(pipeline, tracker, Assignment(id="15", code="t"))

    assert time.monotonic() - start < 10
    assert not result.success
    assert "done" not in result.output
    assert "timed out after 1s" in result.errors
    assert tracker.count() == 0


@posix_only
def test_install_timeout_kills_installer_children(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root, install=RUNNER_FORKS, install_timeout=1)

    start = time.monotonic()
    result = _run(pipeline, tracker, Assignment(id="16", code="t"))

    assert time.monotonic() - start < 10
    assert result.message.startswith("Dependency installation failed:")
    assert "timed out after 1s" in result.message


@posix_only
def test_shutdown_signal_kills_runner_children(cloud: FakeCloud, workspace_root: Path) -> None:
    cancel = threading.Event()
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_FORKS, cancel=cancel)
    timer = threading.Timer(1.0, cancel.set)
    timer.start()

    start = time.monotonic()
    try:
        result = _run(pipeline, tracker, Assignment(id="17", code="t"))
    finally:
        timer.cancel()

    assert time.monotonic() - start < 10
    assert "cancelled by agent shutdown" in result.errors
    assert tracker.count() == 0


def test_shutdown_signal_stops_execution(cloud: FakeCloud, workspace_root: Path) -> None:
    cancel = threading.Event()
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_HANG, cancel=cancel)
    timer = threading.Timer(1.0, cancel.set)
    timer.start()

    start = time.monotonic()
    try:
        result = _run(pipeline, tracker, Assignment(id="11", code="t"))
    finally:
        timer.cancel()

    assert time.monotonic() - start < 30
    assert not result.success
    assert cloud.statuses_for("11")[-1] == "failed"
    assert tracker.count() == 0


def test_status_report_failure_does_not_stop_run(cloud: FakeCloud, workspace_root: Path) -> None:
    cloud.fail.add("status")
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="12", code="t"))

    assert result.success
    assert cloud.results["12"].success


def test_result_report_failure_skips_final_status(cloud: FakeCloud, workspace_root: Path) -> None:
    cloud.fail.add("result")
    pipeline, tracker = _pipeline(cloud, workspace_root)

    result = _run(pipeline, tracker, Assignment(id="13", code="t"))

    assert result.success
    assert cloud.statuses_for("13") == ["started"]
    assert tracker.count() == 0


def test_sequential_runs_leave_no_workspaces(cloud: FakeCloud, workspace_root: Path) -> None:
    pipeline, tracker = _pipeline(cloud, workspace_root)

    for i in range(3):
        assert _run(pipeline, tracker, Assignment(id=f"seq-{i}", code="t")).success

    assert list(workspace_root.iterdir()) == []
    assert tracker.count() == 0


def test_workspace_exists_only_while_running(cloud: FakeCloud, workspace_root: Path) -> None:
    cancel = threading.Event()
    pipeline, tracker = _pipeline(cloud, workspace_root, test=RUNNER_HANG, cancel=cancel)
    assert tracker.try_claim("14")
    worker = threading.Thread(target=pipeline.run, args=(Assignment(id="14", code="t"),))
    worker.start()
    try:
        deadline = time.monotonic() + 15
        while not list(workspace_root.iterdir()) and time.monotonic() < deadline:
            time.sleep(0.02)
        assert len(list(workspace_root.iterdir())) == 1
        assert "14" in tracker
    finally:
        cancel.set()
        worker.join(timeout=30)

    assert list(workspace_root.iterdir()) == []
    assert "14" not in tracker


def test_preview_is_byte_bounded() -> None:
    assert preview("a" * 600) == "a" * 500
    assert len(preview("é" * 400).encode("utf-8")) <= 500
    assert preview("short") == "short"
