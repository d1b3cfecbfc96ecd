from __future__ import annotations

import logging
import re
from typing import Annotated, Any, Dict, List, Mapping, Optional

import jinja2
import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from ..errors import ManifestError, ResolutionError
from .sysinfo import OSInfo

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = "_template"
SUPPORTED_VERSIONS = (1, 2)

# Manifests written for the Go tooling reference fields as {{ .User }}.
_GO_FIELD_RE = re.compile(r"({{-?\s*)\.(?=[A-Za-z_])")

_TEMPLATE_ENV = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def _scalar_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


# YAML scalars (null, booleans, numbers) as the strings salt expects.
Text = Annotated[str, BeforeValidator(_scalar_text)]


def _empty_list(value: Any) -> Any:
    return [] if value is None else value


def _empty_dict(value: Any) -> Any:
    return {} if value is None else value


class Mode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Text = ""
    state: Text = ""
    default: bool = False
    deprecated: bool = False
    # Informational only, never followed when resolving a mode.
    replacement: Text = ""


class OSConstraint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Text = ""
    release: Text = ""
    codename: Text = ""

    def matches(self, host: OSInfo) -> bool:
        checks = [
            (self.id, host.vendor),
            (self.release, host.release),
            (self.codename, host.codename),
        ]
        for wanted, actual in checks:
            if wanted and wanted.lower() != (actual or "").lower():
                return False
        return True


Modes = Annotated[List[Mode], BeforeValidator(_empty_list)]
Constraints = Annotated[List[OSConstraint], BeforeValidator(_empty_list)]


class Manifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = 2
    name: str = ""
    base_dir: str = ""
    modes: List[Mode] = Field(default_factory=list)
    supported_os: List[OSConstraint] = Field(default_factory=list)
    pillars: Dict[str, str] = Field(default_factory=dict)
    success_message: str = ""
    failure_message: str = ""

    @property
    def default_mode(self) -> Optional[Mode]:
        for m in self.modes:
            if m.default:
                return m
        return None

    def get_mode_state(self, mode: Optional[str]) -> str:
        """Resolve a mode name (or the default mode) to a salt state."""

        for m in self.modes:
            if (not mode or mode == "default") and m.default:
                return m.state
            if mode and m.name == mode:
                return m.state
        raise ResolutionError(f"unable to resolve state from mode: {mode or ''}")

    def is_supported(self, host: OSInfo) -> bool:
        if not self.supported_os:
            return True
        return any(c.matches(host) for c in self.supported_os)

    def render(self, data: Mapping[str, Any]) -> "Manifest":
        """Return a copy with every ``*_template`` pillar rendered over ``data``."""

        pillars = dict(self.pillars)
        for key in [k for k in self.pillars if k.endswith(TEMPLATE_SUFFIX)]:
            target = key[: -len(TEMPLATE_SUFFIX)]
            pillars[target] = render_template(self.pillars[key], data, name=key)
            del pillars[key]
            logger.debug("Rendered pillar %s", target)
        return self.model_copy(update={"pillars": pillars})


def render_template(source: str, data: Mapping[str, Any], *, name: str = "template") -> str:
    try:
        tmpl = _TEMPLATE_ENV.from_string(_GO_FIELD_RE.sub(r"\1", source))
        return tmpl.render(**data)
    except jinja2.TemplateSyntaxError as e:
        raise ManifestError(f"invalid template for pillar {name}: {e}") from e
    except jinja2.UndefinedError as e:
        raise ManifestError(f"unable to render pillar {name}: {e}") from e


class SaltStackSection(BaseModel):
    pillars: Annotated[Dict[str, Text], BeforeValidator(_empty_dict)] = Field(default_factory=dict)


class ManifestDocument(BaseModel):
    """``manifest.yml`` as published; v1 documents only use ``base``, modes and supported_os."""

    version: int = 2
    name: Text = ""
    base: Text = ""
    base_dir: Text = ""
    modes: Modes = Field(default_factory=list)
    supported_os: Constraints = Field(default_factory=list)
    saltstack: Annotated[SaltStackSection, BeforeValidator(_empty_dict)] = Field(default_factory=SaltStackSection)
    success_message: Text = ""
    failure_message: Text = ""

    @field_validator("version")
    @classmethod
    def _supported_version(cls, v: int) -> int:
        if v not in SUPPORTED_VERSIONS:
            raise ValueError(f"unsupported manifest version: {v}")
        return v

    @field_validator("modes")
    @classmethod
    def _single_default(cls, v: List[Mode]) -> List[Mode]:
        defaults = [m.name for m in v if m.default]
        if len(defaults) > 1:
            raise ValueError(f"manifest declares more than one default mode: {', '.join(defaults)}")
        return v

    def to_manifest(self) -> Manifest:
        if self.version == 1:
            return Manifest(version=1, base_dir=self.base, modes=self.modes, supported_os=self.supported_os)
        return Manifest(
            version=2,
            name=self.name,
            base_dir=self.base_dir or self.base,
            modes=self.modes,
            supported_os=self.supported_os,
            pillars=dict(self.saltstack.pillars),
            success_message=self.success_message,
            failure_message=self.failure_message,
        )


def manifest_from_dict(data: Dict[str, Any]) -> Manifest:
    try:
        doc = ManifestDocument.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"invalid manifest:\n{e}") from e
    return doc.to_manifest()


def parse_manifest(contents: bytes | str) -> Manifest:
    """Parse a ``manifest.yml`` document."""

    try:
        data = yaml.safe_load(contents) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"unable to parse manifest: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a mapping/dict")
    return manifest_from_dict(data)
