"""Configuration management for nrepl-eval.

Sources, lowest to highest precedence:
1. ~/.config/nrepleval/config.cfg ([DEFAULT] section)
2. .env in the current directory (NREPL_EVAL_* keys only)
3. NREPL_EVAL_* process environment variables
4. CLI flags (applied by the caller)
"""

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from nrepleval.core.evaluator import DEFAULT_INTERRUPT_ATTEMPTS, DEFAULT_POLL_INTERVAL
from nrepleval.core.target import DEFAULT_HOST
from nrepleval.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".config" / "nrepleval" / "config.cfg"
ENV_FILE = ".env"
ENV_PREFIX = "NREPL_EVAL_"

# Environment variable suffix -> config key
ENV_KEYS = {
    "HOST": "host",
    "TIMEOUT_MS": "timeout_ms",
    "POLL_INTERVAL": "poll_interval",
    "INTERRUPT_ATTEMPTS": "interrupt_attempts",
    "CONNECT_TIMEOUT": "connect_timeout",
    "REPAIR_DELIMITERS": "repair_delimiters",
    "PARINFER": "parinfer_command",
    "SESSION_DIR": "session_dir",
    "LOG_LEVEL": "log_level",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EvalSettings:
    host: str = DEFAULT_HOST
    timeout_ms: int = 120_000
    poll_interval: float = DEFAULT_POLL_INTERVAL
    interrupt_attempts: int = DEFAULT_INTERRUPT_ATTEMPTS
    connect_timeout: float = 5.0
    repair_delimiters: bool = True
    parinfer_command: str = "parinfer-rust"
    session_dir: Optional[Path] = None
    log_level: str = "WARNING"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def load_raw_config(path: Path = CONFIG_PATH) -> Dict[str, str]:
    """
    Load configuration values from the config file.
    Values are returned with lowercase keys for convenience.
    """
    cfg = configparser.ConfigParser()
    data: Dict[str, str] = {}

    if path.exists():
        try:
            cfg.read(path)
        except configparser.Error as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})

    return data


def env_overrides(environ: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """Pick NREPL_EVAL_* entries out of a mapping, keyed by config key."""
    data: Dict[str, str] = {}
    for suffix, key in ENV_KEYS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None and str(value).strip() != "":
            data[key] = str(value)
    return data


def load_config(
    path: Path = CONFIG_PATH,
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge config file, .env file and environment into one raw dict."""
    raw = load_raw_config(path)

    env_path = env_file if env_file is not None else Path.cwd() / ENV_FILE
    if env_path.exists():
        raw.update(env_overrides(dotenv_values(env_path)))

    raw.update(env_overrides(os.environ if environ is None else environ))
    return raw


def _get_bool(raw: Dict[str, str], key: str, default: bool = False) -> bool:
    value = raw.get(key)
    if isinstance(value, bool):
        return value
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_number(raw: Dict[str, str], key: str, default, cast):
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        number = cast(float(value))
    except (ValueError, OverflowError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}")
    return number


def get_eval_settings(raw: Optional[Dict[str, str]] = None) -> EvalSettings:
    """
    Build EvalSettings from raw configuration values.
    Raises ConfigError if a value cannot be parsed.
    """
    raw = load_config() if raw is None else raw
    defaults = EvalSettings()

    log_level = raw.get("log_level", defaults.log_level).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"Invalid log_level {log_level!r}; expected one of {', '.join(LOG_LEVELS)}")

    session_dir = raw.get("session_dir", "").strip()

    return EvalSettings(
        host=raw.get("host", "").strip() or defaults.host,
        timeout_ms=_get_number(raw, "timeout_ms", defaults.timeout_ms, int),
        poll_interval=_get_number(raw, "poll_interval", defaults.poll_interval, float),
        interrupt_attempts=_get_number(raw, "interrupt_attempts", defaults.interrupt_attempts, int),
        connect_timeout=_get_number(raw, "connect_timeout", defaults.connect_timeout, float),
        repair_delimiters=_get_bool(raw, "repair_delimiters", defaults.repair_delimiters),
        parinfer_command=raw.get("parinfer_command", "").strip() or defaults.parinfer_command,
        session_dir=Path(session_dir).expanduser() if session_dir else None,
        log_level=log_level,
    )
