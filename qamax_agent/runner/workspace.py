"""Ephemeral per-assignment workspace and the files generated into it."""

from __future__ import annotations

import json
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from qamax_agent.common.constants import (
    ARTIFACT_DIR,
    DEFAULT_VIEWPORT,
    PACKAGE_FILE,
    PLAYWRIGHT_PACKAGE,
    PLAYWRIGHT_VERSION,
    RUNNER_CONFIG_FILE,
    TEST_FILE,
    WORKSPACE_PREFIX,
)
from qamax_agent.runner.models import Assignment

# browser -> (Playwright project name, device descriptor)
BROWSER_PROJECTS: dict[str, tuple[str, str]] = {
    "chromium": ("chromium", "Desktop Chrome"),
    "firefox": ("firefox", "Desktop Firefox"),
    "webkit": ("webkit", "Desktop Safari"),
}
DEFAULT_BROWSER = "chromium"

# Playwright's "no override" value for baseURL
NO_BASE_URL = "undefined"

_CONFIG_TEMPLATE = """\
// @ts-check
const {{ defineConfig, devices }} = require('@playwright/test');

module.exports = defineConfig({{
  testDir: './',
  fullyParallel: false,
  workers: 1,
  retries: 0,
  reporter: 'json',
  projects: [
    {{
      name: '{project}',
      use: {{
        ...devices['{device}'],
        baseURL: {base_url},
        headless: {headless},
        viewport: {{ width: {width}, height: {height} }},
        screenshot: 'on',
        video: 'on',
      }},
    }},
  ],
}});
"""

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class RunSettings:
    """Browser, viewport and target URL resolved from an assignment."""

    project: str
    device: str
    headless: bool
    width: int
    height: int
    base_url_literal: str

    @classmethod
    def for_assignment(cls, assignment: Assignment) -> RunSettings:
        project, device = resolve_browser(assignment.browser)
        width, height = resolve_viewport(assignment.viewport_width, assignment.viewport_height)
        return cls(
            project=project,
            device=device,
            headless=assignment.headless,
            width=width,
            height=height,
            base_url_literal=base_url_literal(assignment.custom_url),
        )


def resolve_browser(browser: str) -> tuple[str, str]:
    """Map a requested browser to its project; unknown or empty means chromium."""
    return BROWSER_PROJECTS.get(browser, BROWSER_PROJECTS[DEFAULT_BROWSER])


def resolve_viewport(width: int, height: int) -> tuple[int, int]:
    """Fall back to the default viewport when either dimension is unset."""
    if width <= 0 or height <= 0:
        return DEFAULT_VIEWPORT
    return width, height


def base_url_literal(custom_url: str) -> str:
    """JavaScript literal for ``baseURL``: a JSON string, or ``undefined``."""
    return json.dumps(custom_url) if custom_url else NO_BASE_URL


def render_runner_config(settings: RunSettings) -> str:
    return _CONFIG_TEMPLATE.format(
        project=settings.project,
        device=settings.device,
        base_url=settings.base_url_literal,
        headless="true" if settings.headless else "false",
        width=settings.width,
        height=settings.height,
    )


def render_package_manifest(assignment_id: str) -> str:
    manifest = {
        "name": f"qamax-test-{_safe_name(assignment_id).lower()}",
        "version": "1.0.0",
        "scripts": {"test": "playwright test"},
        "dependencies": {PLAYWRIGHT_PACKAGE: PLAYWRIGHT_VERSION},
    }
    return json.dumps(manifest, indent=2)


def _safe_name(assignment_id: str) -> str:
    return _UNSAFE_CHARS.sub("-", assignment_id) or "assignment"


class Workspace:
    """A uniquely-named temp directory owned by one pipeline.

    Used as a context manager; the directory is removed on exit no matter
    how the block ends.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def create(cls, assignment_id: str, base_dir: Path | None = None) -> Workspace:
        path = tempfile.mkdtemp(
            prefix=f"{WORKSPACE_PREFIX}{_safe_name(assignment_id)}-",
            dir=str(base_dir) if base_dir is not None else None,
        )
        return cls(Path(path))

    def __enter__(self) -> Workspace:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.remove()

    def remove(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)

    @property
    def artifact_dir(self) -> Path:
        return self.path / ARTIFACT_DIR

    def write_test(self, code: str) -> Path:
        path = self.path / TEST_FILE
        path.write_text(code)
        return path

    def write_manifest(self, assignment_id: str) -> Path:
        path = self.path / PACKAGE_FILE
        path.write_text(render_package_manifest(assignment_id))
        return path

    def write_runner_config(self, settings: RunSettings) -> Path:
        path = self.path / RUNNER_CONFIG_FILE
        path.write_text(render_runner_config(settings))
        return path
