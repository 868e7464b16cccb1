"""CLI entrypoint for the QualityMax local agent.

Commands:
  run       Register, then poll for and execute test assignments until stopped
  status    Show saved auth and agent registration
  token     Print the saved OAuth token
  logout    Remove saved credentials
  version   Print the agent version
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import textwrap
from pathlib import Path

import structlog

from qamax_agent.common.config import (
    AgentConfig,
    ConfigError,
    config_path,
    load_dotenv,
    remove_config,
)
from qamax_agent.common.console import banner, fail, info, mask_secret, ok, warn
from qamax_agent.common.constants import (
    AGENT_NAME,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    VERSION,
)
from qamax_agent.common.logging import configure_structlog
from qamax_agent.runner.daemon import AgentSettings, LocalAgent
from qamax_agent.runner.metrics import MetricsCollector
from qamax_agent.runner.models import RegistrationError

_UNAVAILABLE = ("login", "capture", "projects")


def _load_config() -> AgentConfig:
    try:
        return AgentConfig.load()
    except ConfigError as exc:
        warn(f"Could not load config: {exc}")
        return AgentConfig()


def _pick(flag: str | None, env_var: str, fallback: str) -> str:
    """Flag, then environment, then persisted config."""
    if flag:
        return flag
    return os.environ.get(env_var, "").strip() or fallback


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qamax-agent",
        description=f"{AGENT_NAME} v{VERSION}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              qamax-agent run --cloud-url https://app.qamax.co
              qamax-agent --cloud-url URL          # same as `run --cloud-url URL`
        """),
    )
    parser.add_argument("-v", "--version", action="version", version=f"qamax-agent v{VERSION}")
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    run = sub.add_parser("run", help="Start the agent daemon (poll for test assignments)")
    run.add_argument("--cloud-url", default=None,
                     help="QualityMax cloud URL (e.g. https://app.qamax.co)")
    run.add_argument("--api-key", default=None,
                     help="Agent API key (generated on first registration if omitted)")
    run.add_argument("--agent-id", default=None,
                     help="Agent ID (generated on first registration if omitted)")
    run.add_argument("--registration-secret", default=None,
                     help="Registration secret (must match AGENT_REGISTRATION_SECRET on the server)")
    run.add_argument("--poll-interval", type=int, default=DEFAULT_POLL_INTERVAL,
                     help=f"Polling interval in seconds. Default: {DEFAULT_POLL_INTERVAL}")
    run.add_argument("--heartbeat-interval", type=int, default=DEFAULT_HEARTBEAT_INTERVAL,
                     help=f"Heartbeat interval in seconds. Default: {DEFAULT_HEARTBEAT_INTERVAL}")
    run.add_argument("--max-concurrent", type=int, default=0,
                     help="Maximum simultaneous executions (0 = unlimited). Default: 0")
    run.add_argument("--log-dir", type=Path, default=None,
                     help="Also write execution events as JSON lines to this directory")
    run.add_argument("--log-json", action="store_true", help="Emit console logs as JSON")
    run.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub.add_parser("status", help="Show current auth and agent status")
    sub.add_parser("token", help="Print the saved OAuth token to stdout")
    sub.add_parser("logout", help="Remove saved credentials")
    sub.add_parser("version", help="Print the agent version")
    sub.add_parser("help", help="Show this help message")
    for name in _UNAVAILABLE:
        sub.add_parser(name, help="Not available in this build")
    return parser


def cmd_run(args: argparse.Namespace) -> int:
    configure_structlog(logging.DEBUG if args.verbose else logging.INFO, json=args.log_json)
    load_dotenv(Path.cwd() / ".env")
    cfg = _load_config()

    cloud_url = _pick(args.cloud_url, "QAMAX_CLOUD_URL", cfg.api_base_url).rstrip("/")
    if not cloud_url:
        fail("--cloud-url is required (set via flag, QAMAX_CLOUD_URL, or the saved config)")
    registration_secret = _pick(args.registration_secret, "QAMAX_REGISTRATION_SECRET", cfg.registration_secret)

    settings = AgentSettings(
        cloud_url=cloud_url,
        api_key=_pick(args.api_key, "QAMAX_API_KEY", cfg.api_key),
        agent_id=_pick(args.agent_id, "QAMAX_AGENT_ID", cfg.agent_id),
        registration_secret=registration_secret,
        poll_interval=max(1, args.poll_interval),
        heartbeat_interval=max(1, args.heartbeat_interval),
        max_concurrent=max(0, args.max_concurrent),
        log_dir=args.log_dir,
    )
    log = structlog.get_logger("cli")

    def save_credentials(agent_id: str, api_key: str) -> None:
        cfg.agent_id = agent_id
        cfg.api_key = api_key
        if not cfg.api_url:
            cfg.api_url = cloud_url
        if not cfg.registration_secret and registration_secret:
            cfg.registration_secret = registration_secret
        path = cfg.save()
        log.info("credentials_saved", path=str(path))

    agent = LocalAgent(
        settings,
        on_registered=save_credentials,
        metrics=MetricsCollector().collect,
    )

    def _on_signal(signum, frame) -> None:  # noqa: ANN001
        log.info("agent_stopped_by_signal", signal=signal.Signals(signum).name)
        agent.shutdown()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        agent.run()
    except RegistrationError as exc:
        fail(f"Failed to register agent: {exc}")
    return 0


def cmd_status(_args: argparse.Namespace) -> int:
    try:
        cfg = AgentConfig.load()
    except ConfigError as exc:
        fail(f"Error loading config: {exc}")

    print(f"Config: {config_path()}")
    print()
    print("Auth:   logged in (OAuth token present)" if cfg.token else "Auth:   not logged in")
    print(f"API:    {cfg.api_url}" if cfg.api_url else "API:    not configured")
    if cfg.agent_id:
        print(f"Agent:  registered (ID: {cfg.agent_id})")
    else:
        print("Agent:  not registered")
    if cfg.api_key:
        print(f"Key:    {mask_secret(cfg.api_key)}")
    return 0


def cmd_token(_args: argparse.Namespace) -> int:
    cfg = _load_config()
    if not cfg.token:
        fail("not logged in. Run `qamax-agent login` first.")
    sys.stdout.write(cfg.token)
    return 0


def cmd_logout(_args: argparse.Namespace) -> int:
    if remove_config():
        ok("Logged out. Config removed.")
    else:
        info("Already logged out (no config file found).")
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    # Bare flags mean `run`: `qamax-agent --cloud-url URL`
    if argv and argv[0].startswith("-") and argv[0] not in ("-h", "--help", "-v", "--version"):
        argv.insert(0, "run")

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "run":
        banner(f"{AGENT_NAME} v{VERSION}")
        return cmd_run(args)
    if args.command == "status":
        return cmd_status(args)
    if args.command == "token":
        return cmd_token(args)
    if args.command == "logout":
        return cmd_logout(args)
    if args.command == "version":
        print(f"qamax-agent v{VERSION}")
        return 0
    if args.command in _UNAVAILABLE:
        fail(f"`{args.command}` is not available in this build.", code=2)
    parser.print_help()
    return 0 if args.command == "help" else 1
