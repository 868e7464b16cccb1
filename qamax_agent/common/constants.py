"""Shared constants for the QualityMax local agent."""

from pathlib import Path

VERSION = "2.0.0"
AGENT_NAME = "QualityMax Local Agent"

# Persisted config lives in ~/.qamax unless QAMAX_HOME points elsewhere
CONFIG_DIR_NAME = ".qamax"
CONFIG_FILE_NAME = "config.json"
DEFAULT_CONFIG_DIR = Path.home() / CONFIG_DIR_NAME

# ── Loop timing (seconds) ───────────────────────────────────────────────────
DEFAULT_POLL_INTERVAL = 5
DEFAULT_HEARTBEAT_INTERVAL = 60
MAX_HEARTBEAT_BACKOFF = 300
HEARTBEAT_FAILURE_ALERT = 5     # consecutive failures before logging at error

# ── External tooling guardrails (seconds) ───────────────────────────────────
INSTALL_TIMEOUT_SECS = 300
RUN_TIMEOUT_SECS = 600

# ── HTTP ─────────────────────────────────────────────────────────────────────
HTTP_TIMEOUT_SECS = 60
MAX_RESPONSE_BYTES = 50 * 1024 * 1024
API_KEY_HEADER = "X-Agent-API-Key"

# ── Workspace layout ─────────────────────────────────────────────────────────
WORKSPACE_PREFIX = "qamax-agent-"
TEST_FILE = "test.spec.js"
PACKAGE_FILE = "package.json"
RUNNER_CONFIG_FILE = "playwright.config.js"
ARTIFACT_DIR = "test-results"
PLAYWRIGHT_PACKAGE = "@playwright/test"
PLAYWRIGHT_VERSION = "^1.51.0"

DEFAULT_VIEWPORT = (1280, 720)
LOG_PREVIEW_BYTES = 500
