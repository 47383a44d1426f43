"""
Configuration model, YAML loading and command-line override layering.

A Config is resolved once at startup (defaults, then YAML, then CLI
values) and is read-only for the rest of the run.
"""

import logging
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from tracks.events import EventCategory, default_events, resolve_event_filter
from tracks.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = (
    Path("config") / "tracks-default.yaml",
    Path("tracks-default.yaml"),
)


class NetworkConfig(BaseModel):
    """Where emitted envelopes are sent."""

    model_config = ConfigDict(frozen=True)

    multicast_group: str = "239.255.0.1"
    port: int = Field(default=5000, ge=1, le=65535)
    ttl: int = Field(default=1, ge=0, le=255)
    loopback: bool = True
    interface: str = "0.0.0.0"
    # None disables the duplicate; "auto" probes the default gateway.
    unicast_target: str | None = None
    unicast_port: int | None = Field(default=None, ge=1, le=65535)


class AnalysisConfig(BaseModel):
    """Framing parameters shared by every analysis pass."""

    model_config = ConfigDict(frozen=True)

    sample_rate: int = Field(default=44100, gt=0)
    frame_size: int = Field(default=2048, gt=0)
    hop_size: int = Field(default=1024, gt=0)

    @model_validator(mode="after")
    def check_hop(self) -> "AnalysisConfig":
        if self.hop_size > self.frame_size:
            raise ValueError("hop_size must not exceed frame_size")
        return self

    def frame_to_time(self, frame_index: int) -> float:
        """Convert a frame index to seconds from the start of the file."""
        return frame_index * self.hop_size / self.sample_rate


class TransportConfig(BaseModel):
    """Emission pacing."""

    model_config = ConfigDict(frozen=True)

    position_interval: float = Field(default=1.0, gt=0.0)
    prepare_time: float = Field(default=0.0, ge=0.0)


class EventsConfig(BaseModel):
    """Which categories to produce and how densely."""

    model_config = ConfigDict(frozen=True)

    continuous_interval: float = Field(default=0.1, gt=0.0)
    enabled: frozenset[EventCategory] = Field(default_factory=default_events)

    @field_validator("enabled", mode="before")
    @classmethod
    def parse_enabled(cls, v: Any) -> Any:
        # YAML gives a preset name or a list of names.
        if isinstance(v, str):
            return resolve_event_filter(v)
        if isinstance(v, list):
            return resolve_event_filter(",".join(str(item) for item in v))
        return v

    @field_validator("enabled")
    @classmethod
    def check_enabled(cls, v: frozenset) -> frozenset:
        if not v:
            raise ValueError("event filter is empty")
        return v


_SECTIONS = {
    "network": NetworkConfig,
    "analysis": AnalysisConfig,
    "transport": TransportConfig,
    "events": EventsConfig,
}


def _describe(error: ValidationError) -> str:
    """One line per failing field, e.g. ``network.port: Input should be a valid integer``."""
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        lines.append(f"{location}: {item['msg']}")
    return "; ".join(lines)


class Config(BaseModel):
    """Fully resolved run configuration."""

    model_config = ConfigDict(frozen=True)

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    input_file: str | None = None

    def with_overrides(self, **overrides: Any) -> "Config":
        """
        Return a copy with flat keyword overrides applied.

        Keys are field names of any section (e.g. ``port``, ``hop_size``,
        ``continuous_interval``) or ``input_file``. None values are
        ignored so argparse defaults can be passed straight through.

        Raises:
            ConfigError: On an unknown key or a value that fails validation.
        """
        updates: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
        input_file = self.input_file

        for key, value in overrides.items():
            if value is None:
                continue
            if key == "input_file":
                input_file = str(value)
                continue
            for name, cls in _SECTIONS.items():
                if key in cls.model_fields:
                    updates[name][key] = value
                    break
            else:
                raise ConfigError(f"unknown configuration key: {key}")

        try:
            resolved = {
                name: cls.model_validate({**dict(getattr(self, name)), **updates[name]})
                if updates[name]
                else getattr(self, name)
                for name, cls in _SECTIONS.items()
            }
        except ValidationError as e:
            raise ConfigError(f"invalid configuration: {_describe(e)}") from e
        return Config(**resolved, input_file=input_file)


def load_config(path: Union[str, Path]) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: YAML file with optional sections network, analysis,
              transport and events.

    Returns:
        Validated Config.

    Raises:
        ConfigError: If the file cannot be read or holds invalid values.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            root = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(root, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    sections = {}
    for key, data in root.items():
        cls = _SECTIONS.get(key)
        if cls is None:
            logger.warning("ignoring unknown config section '%s'", key)
            continue
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ConfigError(f"section '{key}' must be a mapping")
        for name in data:
            if name not in cls.model_fields:
                logger.warning("ignoring unknown config key %s.%s", key, name)
        sections[key] = {k: v for k, v in data.items() if k in cls.model_fields}

    try:
        config = Config.model_validate(sections)
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {_describe(e)}") from e
    logger.debug("loaded config from %s", path)
    return config


def find_default_config() -> Path | None:
    """First existing default config location, if any."""
    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.is_file():
            return candidate
    return None
