"""Persisted agent configuration (``~/.qamax/config.json``)."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from qamax_agent.common.constants import CONFIG_FILE_NAME, DEFAULT_CONFIG_DIR


class ConfigError(RuntimeError):
    """The config file exists but cannot be read or parsed."""


def config_dir() -> Path:
    override = os.environ.get("QAMAX_HOME", "").strip()
    return Path(override) if override else DEFAULT_CONFIG_DIR


def config_path() -> Path:
    return config_dir() / CONFIG_FILE_NAME


@dataclass
class AgentConfig:
    """Credentials and endpoints remembered between agent runs."""

    token: str = ""                # OAuth token from `login`
    api_url: str = ""
    agent_id: str = ""
    api_key: str = ""
    registration_secret: str = ""

    @property
    def api_base_url(self) -> str:
        """API URL without a trailing slash or ``/app`` suffix."""
        url = self.api_url.rstrip("/")
        if url.endswith("/app"):
            url = url[: -len("/app")]
        return url

    @classmethod
    def load(cls, path: Path | None = None) -> AgentConfig:
        """Read the config file; a missing file yields an empty config."""
        path = path or config_path()
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return cls()
        except OSError as exc:
            raise ConfigError(f"read config: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"parse config: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError("parse config: expected a JSON object")
        known = {f.name for f in fields(cls)}
        return cls(**{k: str(v) for k, v in data.items() if k in known and v})

    def save(self, path: Path | None = None) -> Path:
        """Write the config with owner-only permissions and return its path."""
        path = path or config_path()
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        data = {k: v for k, v in asdict(self).items() if v}
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(data, indent=2))
        os.chmod(path, 0o600)
        return path


def remove_config(path: Path | None = None) -> bool:
    """Delete the config file. Returns False if there was nothing to delete."""
    path = path or config_path()
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def load_dotenv(env_path: Path) -> None:
    """Load variables from a .env file into os.environ (no overwrite)."""
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("\"'")
            os.environ.setdefault(key, value)
