"""Machine identity and capability detection, computed once at startup."""

from __future__ import annotations

import os
import platform
import shutil
import socket
import subprocess
import sys

import structlog

from qamax_agent.runner.models import Capabilities

_log = structlog.get_logger("capabilities")

_CHROME_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    "/usr/bin/google-chrome",
    "/usr/bin/chromium-browser",
)
_FIREFOX_PATHS = (
    "/Applications/Firefox.app/Contents/MacOS/firefox",
    "C:\\Program Files\\Mozilla Firefox\\firefox.exe",
    "/usr/bin/firefox",
)
_EDGE_PATHS = (
    "C:\\Program Files (x86)\\Microsoft\\Edge\\Application\\msedge.exe",
    "C:\\Program Files\\Microsoft\\Edge\\Application\\msedge.exe",
)
_SAFARI_APP = "/Applications/Safari.app"

_VERSION_COMMANDS = {
    "darwin": ["sw_vers", "-productVersion"],
    "linux": ["uname", "-r"],
    "windows": ["cmd", "/c", "ver"],
}


def os_name() -> str:
    """Platform name in the service's vocabulary (darwin, linux, windows)."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def architecture() -> str:
    machine = platform.machine().lower()
    return {"x86_64": "amd64", "aarch64": "arm64"}.get(machine, machine)


def machine_id() -> str:
    """``<platform>-<hostname>-<first resolved address>``; the address may be empty."""
    hostname = socket.gethostname()
    try:
        address = socket.gethostbyname(hostname)
    except OSError:
        address = ""
    return f"{os_name()}-{hostname}-{address}"


def platform_version() -> str:
    cmd = _VERSION_COMMANDS.get(os_name())
    if cmd is None:
        return ""
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=10, check=True)
    except (OSError, subprocess.SubprocessError):
        return ""
    return out.stdout.strip()


def _any_exists(paths: tuple[str, ...]) -> bool:
    return any(os.path.exists(p) for p in paths)


def _on_path(*names: str) -> bool:
    return any(shutil.which(n) for n in names)


def detect_browsers() -> list[str]:
    system = os_name()
    browsers: list[str] = []
    if _any_exists(_CHROME_PATHS) or _on_path("google-chrome", "chromium"):
        browsers.append("chromium")
    if _any_exists(_FIREFOX_PATHS) or _on_path("firefox"):
        browsers.append("firefox")
    if system == "windows" and _any_exists(_EDGE_PATHS):
        browsers.append("msedge")
    if system == "darwin" and _any_exists((_SAFARI_APP,)):
        browsers.append("webkit")

    if not browsers:
        _log.warning("no_browsers_detected", fallback="chromium")
        browsers = ["chromium"]
    return browsers


def detect_capabilities() -> Capabilities:
    return Capabilities(
        platform=os_name(),
        platform_version=platform_version(),
        architecture=architecture(),
        browsers=detect_browsers(),
        playwright_available=_on_path("npx"),
    )
