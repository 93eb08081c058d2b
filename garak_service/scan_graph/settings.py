from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
import os
from pathlib import Path
import shlex
from typing import Any

from garak_service.scan_graph.observability import load_environment

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_RUNS_SUBDIR = Path(".local") / "share" / "garak" / "garak_runs"
REPORT_SUFFIX = ".report.jsonl"


@dataclass(frozen=True)
class ServiceSettings:
    config_dir: Path
    temp_dir: Path
    logs_dir: Path
    runs_dir: Path
    garak_command: tuple[str, ...] = ("python3", "-m", "garak")
    default_probe: str = "goodside.Tag"
    scan_timeout_seconds: float = 300.0
    request_timeout_seconds: int = 30
    terminate_on_timeout: bool = True


@dataclass(frozen=True)
class ScanCredentials:
    api_key: str | None = field(default=None, repr=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else default


def load_settings() -> ServiceSettings:
    load_environment()

    command = shlex.split(os.getenv("GARAK_COMMAND", "python3 -m garak"))
    if not command:
        raise RuntimeError("GARAK_COMMAND must name an executable")

    return ServiceSettings(
        config_dir=_env_path("GARAK_CONFIG_DIR", PROJECT_ROOT / "config"),
        temp_dir=_env_path("GARAK_TEMP_DIR", PROJECT_ROOT / "temp"),
        logs_dir=_env_path("GARAK_LOGS_DIR", PROJECT_ROOT / "logs"),
        runs_dir=_env_path("GARAK_RUNS_DIR", Path.home() / DEFAULT_RUNS_SUBDIR),
        garak_command=tuple(command),
        default_probe=os.getenv("GARAK_DEFAULT_PROBE", "goodside.Tag").strip() or "goodside.Tag",
        scan_timeout_seconds=float(os.getenv("SCAN_TIMEOUT_SECONDS", "300")),
        request_timeout_seconds=int(os.getenv("TARGET_REQUEST_TIMEOUT_SECONDS", "30")),
        terminate_on_timeout=_env_bool("GARAK_TERMINATE_ON_TIMEOUT", True),
    )


def settings_from_config(config: Mapping[str, Any] | None) -> ServiceSettings:
    configurable = config.get("configurable", {}) if isinstance(config, Mapping) else {}
    settings = configurable.get("settings") if isinstance(configurable, Mapping) else None
    if not isinstance(settings, ServiceSettings):
        raise RuntimeError("Scan workflow invoked without service settings")
    return settings


def credentials_from_config(config: Mapping[str, Any] | None) -> ScanCredentials:
    configurable = config.get("configurable", {}) if isinstance(config, Mapping) else {}
    credentials = configurable.get("credentials") if isinstance(configurable, Mapping) else None
    if isinstance(credentials, ScanCredentials):
        return credentials
    return ScanCredentials()
