from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Sequence, get_args

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .lib.distro import LOCAL_CONFIG_FILE, DistroKind
from .logging_utils import DEFAULT_LOG_PATH, LogLevel
from .state_store import DEFAULT_STATE_PATH

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = "/var/cache/cast"

SaltLogLevel = Literal["all", "garbage", "trace", "debug", "profile", "info", "warning", "error", "critical", "quiet"]
SALT_LOG_LEVELS = get_args(SaltLogLevel)

# Environment fallbacks, first match wins.
ENV_FALLBACKS: Dict[str, Sequence[str]] = {
    "github_token": ("GITHUB_TOKEN", "CAST_GITHUB_TOKEN"),
    "mode": ("CAST_MODE",),
    "user": ("SUDO_USER", "CAST_SUDO_USER"),
    "cache_path": ("CAST_CACHE_PATH",),
    "dev": ("CAST_DEVELOPMENT_MODE",),
    "no_root_check": ("CAST_NO_ROOT_CHECK",),
    "saltstack_test": ("CAST_SALTSTACK_TEST",),
    "saltstack_state": ("CAST_SALTSTACK_STATE",),
    "saltstack_file_root": ("CAST_SALTSTACK_FILE_ROOT",),
    "saltstack_log_level": ("CAST_SALTSTACK_LOG_LEVEL",),
    "pgp_key_file": ("CAST_PGP_KEY_FILE",),
    "state_path": ("CAST_STATE_PATH",),
    "log_level": ("LOGLEVEL", "CAST_LOG_LEVEL"),
}


def split_identifier(identifier: str) -> tuple[str, Optional[str]]:
    """``name@version`` -> ``(name, version)``; the version part is optional."""

    parts = identifier.split("@")
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]
    return identifier, None


def parse_variables(items: Sequence[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key or "=" in value:
            logger.warning("Ignoring invalid variable (%s), expected key=value", item)
            continue
        out[key] = value
    return out


def _variables_from_list(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return parse_variables([str(v) for v in value])
    return value


# ``--variable key=value`` lists and YAML mappings both end up as a plain dict.
Variables = Annotated[Dict[str, str], BeforeValidator(_variables_from_list)]


class InstallOptions(BaseModel):
    """Options that may come from the config file, the environment or the CLI."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True, coerce_numbers_to_str=True)

    version: Optional[str] = None
    mode: Optional[str] = Field(default=None, description="None unless set, so the saved mode can apply")
    user: str = ""
    cache_path: str = DEFAULT_CACHE_PATH
    github_token: Optional[str] = None
    variables: Variables = Field(default_factory=dict)
    pre_release: bool = False
    dev: bool = False
    no_root_check: bool = False
    no_os_check: bool = False
    no_dependency_install: bool = False
    saltstack_state: Optional[str] = None
    saltstack_file_root: Optional[str] = None
    saltstack_test: bool = False
    saltstack_log_level: SaltLogLevel = "info"
    timeout: Optional[float] = Field(default=None, gt=0)
    pgp_key_file: Optional[str] = None
    state_path: str = DEFAULT_STATE_PATH
    log_path: str = DEFAULT_LOG_PATH
    log_level: LogLevel = "info"

    @field_validator("saltstack_log_level", "log_level", mode="before")
    @classmethod
    def _lower_level(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class InstallConfig(InstallOptions):
    distro: str = Field(min_length=1)

    @property
    def kind(self) -> DistroKind:
        if os.path.isdir(self.distro) and os.path.isfile(os.path.join(self.distro, LOCAL_CONFIG_FILE)):
            return DistroKind.LOCAL
        return DistroKind.GITHUB

    @property
    def distro_key(self) -> str:
        return self.distro

    @property
    def effective_cache_path(self) -> Path:
        if self.dev:
            return Path(tempfile.gettempdir()) / self.cache_path.lstrip("/")
        return Path(self.cache_path).expanduser()

    def template_data(self) -> Dict[str, str]:
        data = {"User": self.user}
        data.update(self.variables)
        return data


def load_config_file(path: str | Path) -> Dict[str, Any]:
    """Read and validate a YAML options file; returns only the keys it sets.

    Keys may be spelled with dashes, like the command line flags.
    """

    p = Path(path).expanduser()
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"unable to read config file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"unable to parse config file {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {p} must be a mapping, got {type(data).__name__}")

    try:
        options = InstallOptions.model_validate({str(k).replace("-", "_"): v for k, v in data.items()})
    except ValidationError as e:
        raise ConfigError(f"invalid config file {p}:\n{e}") from e
    return options.model_dump(exclude_unset=True)


def env_defaults(environ: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name, keys in ENV_FALLBACKS.items():
        for key in keys:
            value = environ.get(key)
            if value:
                out[name] = value
                break
    variables = environ.get("CAST_VARIABLE")
    if variables:
        out["variables"] = variables.split(",")
    return out


def build_config(
    distro: str,
    cli: Mapping[str, Any],
    *,
    file_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> InstallConfig:
    """Merge CLI values over environment values over config-file values.

    ``cli`` only holds options the user actually passed; ``None`` means unset.
    Template variables merge key by key across the layers.
    """

    layers = [
        dict(file_values or {}),
        env_defaults(os.environ if environ is None else environ),
        {k: v for k, v in cli.items() if v is not None and v is not False and v != []},
    ]

    name, version = split_identifier(distro)
    merged: Dict[str, Any] = {}
    variables: Dict[str, str] = {}
    try:
        for layer in layers:
            if "variables" in layer:
                variables.update(InstallOptions(variables=layer.pop("variables")).variables)
            layer.pop("distro", None)
            merged.update(layer)
        merged.update(distro=name, variables=variables)
        if version:
            merged["version"] = version
        return InstallConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration for {distro}:\n{e}") from e
