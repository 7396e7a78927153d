"""Config file model and mandatory-field validation.

The config file is a single YAML document:

    region: us-west-2
    api_endpoint: http://127.0.0.1:8080/api
    sync_interval_in_seconds: 5
    upstreams:
      - name: backend1
        autoscaling_group: backend-group
        port: 80
        kind: http

Parsing is lenient (missing keys become empty values) so that validation can
report the first missing field by name, in a fixed order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from nginx_asg_sync.errors import ConfigError

logger = logging.getLogger(__name__)

MAX_PORT = 65535

ERROR_MSG_FORMAT = "The mandatory field {} is either empty or missing in the config file"
INTERVAL_ERROR_MSG = (
    "The mandatory field sync_interval_in_seconds is either 0 or missing in the config file"
)
NO_UPSTREAMS_ERROR_MSG = "There are no upstreams found in the config file"
UPSTREAMS_SHAPE_ERROR_MSG = "The field upstreams must be a list in the config file"
UPSTREAM_NAME_ERROR_MSG = (
    "The mandatory field name is either empty or missing for an upstream in the config file"
)
UPSTREAM_ERROR_MSG_FORMAT = (
    "The mandatory field {} is either empty or missing for the upstream {} in the config file"
)
UPSTREAM_PORT_ERROR_MSG_FORMAT = (
    "The mandatory field port is either zero or missing for the upstream {} in the config file"
)
UPSTREAM_KIND_ERROR_MSG_FORMAT = (
    "The mandatory field kind is either not equal to http or stream or missing "
    "for the upstream {} in the config file"
)
UPSTREAM_DUPLICATE_ERROR_MSG_FORMAT = (
    "The upstream {} of kind {} is declared more than once in the config file"
)


# =============================================================================
# Enums
# =============================================================================


class UpstreamKind(Enum):
    """Selects which NGINX Plus API an upstream lives under."""

    HTTP = "http"
    STREAM = "stream"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Upstream:
    """Cloud agnostic representation of an upstream to keep in sync."""

    name: str
    port: int
    scaling_group: str
    kind: UpstreamKind


@dataclass(frozen=True)
class AWSUpstreamConfig:
    """An upstream entry as written in the AWS config file."""

    name: str = ""
    autoscaling_group: str = ""
    port: int = 0
    kind: str = ""

    def to_upstream(self) -> Upstream:
        return Upstream(
            name=self.name,
            port=self.port,
            scaling_group=self.autoscaling_group,
            kind=UpstreamKind(self.kind),
        )


@dataclass(frozen=True)
class AWSConfig:
    """Top-level AWS config file contents."""

    region: str = ""
    api_endpoint: str = ""
    sync_interval_in_seconds: int = 0
    upstreams: Tuple[AWSUpstreamConfig, ...] = field(default_factory=tuple)
    # Shape problem in the upstreams section, reported when upstreams are validated.
    upstreams_error: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AWSConfig":
        raw_upstreams = data.get("upstreams") or []
        upstreams_error = ""
        if not isinstance(raw_upstreams, list):
            upstreams_error = UPSTREAMS_SHAPE_ERROR_MSG
            raw_upstreams = []

        upstreams: List[AWSUpstreamConfig] = []
        for item in raw_upstreams:
            if not isinstance(item, dict):
                if not upstreams_error:
                    upstreams_error = f"Upstream entry must be a mapping, got: {item!r}"
                continue
            upstreams.append(
                AWSUpstreamConfig(
                    name=str(item.get("name") or "").strip(),
                    autoscaling_group=str(item.get("autoscaling_group") or "").strip(),
                    port=_parse_int(item.get("port")),
                    kind=str(item.get("kind") or "").strip(),
                )
            )

        return cls(
            region=str(data.get("region") or "").strip(),
            api_endpoint=str(data.get("api_endpoint") or "").strip(),
            sync_interval_in_seconds=_parse_int(data.get("sync_interval_in_seconds")),
            upstreams=tuple(upstreams),
            upstreams_error=upstreams_error,
        )


# =============================================================================
# Loading and Validation
# =============================================================================


def _parse_int(value: Any) -> int:
    """Parse an integer field; anything unusable becomes 0 so validation rejects it."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def validate_aws_config(cfg: AWSConfig) -> None:
    """Raise ConfigError for the first missing or invalid mandatory field."""
    if not cfg.region:
        raise ConfigError(ERROR_MSG_FORMAT.format("region"))
    if not cfg.api_endpoint:
        raise ConfigError(ERROR_MSG_FORMAT.format("api_endpoint"))
    if cfg.sync_interval_in_seconds <= 0:
        raise ConfigError(INTERVAL_ERROR_MSG)

    if cfg.upstreams_error:
        raise ConfigError(cfg.upstreams_error)
    if not cfg.upstreams:
        raise ConfigError(NO_UPSTREAMS_ERROR_MSG)

    seen: Set[Tuple[str, str]] = set()
    for ups in cfg.upstreams:
        if not ups.name:
            raise ConfigError(UPSTREAM_NAME_ERROR_MSG)
        if not ups.autoscaling_group:
            raise ConfigError(UPSTREAM_ERROR_MSG_FORMAT.format("autoscaling_group", ups.name))
        if ups.port <= 0 or ups.port > MAX_PORT:
            raise ConfigError(UPSTREAM_PORT_ERROR_MSG_FORMAT.format(ups.name))
        if ups.kind not in {k.value for k in UpstreamKind}:
            raise ConfigError(UPSTREAM_KIND_ERROR_MSG_FORMAT.format(ups.name))

        key = (ups.kind, ups.name)
        if key in seen:
            raise ConfigError(UPSTREAM_DUPLICATE_ERROR_MSG_FORMAT.format(ups.name, ups.kind))
        seen.add(key)


def load_aws_config(config_path: str) -> AWSConfig:
    """Read, parse and validate an AWS config file."""
    try:
        with open(config_path, "r") as f:
            data: Optional[Any] = yaml.safe_load(f)
    except (OSError, IOError) as e:
        raise ConfigError(f"Couldn't read the config file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Couldn't parse the config file {config_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a YAML mapping")

    cfg = AWSConfig.from_dict(data)
    validate_aws_config(cfg)
    logger.debug(f"Loaded {len(cfg.upstreams)} upstream(s) from {config_path}")
    return cfg
