from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from platformdirs import user_config_path

DEFAULT_PLUGINS_DIR = "/usr/share/jenkins/ref/plugins"
DEFAULT_WAR_PATH = "/usr/share/jenkins/jenkins.war"
DEFAULT_UPDATE_CENTER_URL = "https://updates.jenkins.io"
DEFAULT_EXPERIMENTAL_URL = "https://updates.jenkins.io/experimental"
DEFAULT_INCREMENTALS_URL = "https://repo.jenkins-ci.org/incrementals"
DEFAULT_TIMEOUT_S = 20.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY_S = 0.0
DEFAULT_RETRY_MAX_TIME_S = 60.0


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    plugins_dir: str = DEFAULT_PLUGINS_DIR
    war_path: str = DEFAULT_WAR_PATH
    update_center_url: str = DEFAULT_UPDATE_CENTER_URL
    experimental_url: str | None = DEFAULT_EXPERIMENTAL_URL  # empty/None disables the channel
    incrementals_url: str = DEFAULT_INCREMENTALS_URL
    download_url: str | None = None  # None -> <update_center_url>/download
    timeout_s: float = DEFAULT_TIMEOUT_S
    retries: int = DEFAULT_RETRIES
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S
    retry_max_time_s: float = DEFAULT_RETRY_MAX_TIME_S

    @property
    def download_base(self) -> str:
        if self.download_url:
            return self.download_url.rstrip("/")
        return f"{self.update_center_url.rstrip('/')}/download"


# Environment names understood by the classic install-plugins.sh script.
_ENV_FIELDS: dict[str, str] = {
    "JENKINS_WAR": "war_path",
    "JENKINS_UC": "update_center_url",
    "JENKINS_UC_EXPERIMENTAL": "experimental_url",
    "JENKINS_INCREMENTALS_REPO_MIRROR": "incrementals_url",
    "JENKINS_UC_DOWNLOAD": "download_url",
    "CURL_CONNECTION_TIMEOUT": "timeout_s",
    "CURL_RETRY": "retries",
    "CURL_RETRY_DELAY": "retry_delay_s",
    "CURL_RETRY_MAX_TIME": "retry_max_time_s",
}

_FLOAT_FIELDS = {"timeout_s", "retry_delay_s", "retry_max_time_s"}
_INT_FIELDS = {"retries"}


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("HPI_INSTALLER_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("hpi-installer") / "config.json"


def coerce_field(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _INT_FIELDS:
        try:
            out = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e
        if out < 0:
            raise ConfigError(f"{name} must not be negative, got {value!r}")
        return out
    if name in _FLOAT_FIELDS:
        try:
            out_f = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be a number, got {value!r}") from e
        if out_f < 0:
            raise ConfigError(f"{name} must not be negative, got {value!r}")
        return out_f
    return str(value)


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: coerce_field(k, v) for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def apply_env(base: Config, environ: Mapping[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    updates: dict[str, Any] = {}

    # REF points at the reference directory; plugins live below it.
    if ref := env.get("REF"):
        updates["plugins_dir"] = str(Path(ref) / "plugins")

    for var, field_name in _ENV_FIELDS.items():
        value = env.get(var)
        if value is None:
            continue
        if value == "" and field_name not in ("experimental_url", "download_url"):
            continue
        updates[field_name] = coerce_field(field_name, value)
    return replace(base, **updates) if updates else base


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path
