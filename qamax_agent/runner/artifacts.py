"""Screenshot and video collection from a finished run."""

from __future__ import annotations

import base64
import os
from pathlib import Path

import structlog

from qamax_agent.runner.models import Artifacts, FileArtifact

SCREENSHOT_SUFFIX = ".png"
VIDEO_SUFFIX = ".webm"

_log = structlog.get_logger("artifacts")


def _encode(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")


def collect_artifacts(artifact_dir: Path) -> Artifacts:
    """Walk *artifact_dir* for screenshots and the first video.

    Every ``.png`` becomes a screenshot; only the first ``.webm`` met during
    the walk is kept. A missing directory yields empty artifacts. Files that
    cannot be read are skipped with a warning.
    """
    artifacts = Artifacts()
    if not artifact_dir.is_dir():
        return artifacts

    for root, _dirs, files in os.walk(artifact_dir):
        for name in files:
            path = Path(root) / name
            if name.endswith(SCREENSHOT_SUFFIX):
                try:
                    artifacts.screenshots.append(FileArtifact(filename=name, data=_encode(path)))
                except OSError as exc:
                    _log.warning("screenshot_unreadable", path=str(path), error=str(exc))
            elif name.endswith(VIDEO_SUFFIX) and artifacts.video is None:
                try:
                    artifacts.video = FileArtifact(filename=name, data=_encode(path))
                except OSError as exc:
                    _log.warning("video_unreadable", path=str(path), error=str(exc))
    return artifacts
