"""Export configuration.

Example:
    >>> config = ExportConfig(
    ...     project_id="my-project",
    ...     step_seconds=60.0,
    ...     resource_labels={"location": "us-central1"},
    ... )
    >>> config.validate()

    Or from a file with an optional ``stackdriver:`` section:

    >>> config = ExportConfig.from_file("config/metrics.yaml")
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from stackmetrics.exceptions import ConfigError

# The backend accepts at most 200 time series per create request.
TIMESERIES_PER_REQUEST_LIMIT = 200

DEFAULT_ENV_PREFIX = "STACKDRIVER_"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on")


def _parse_labels(value: str) -> dict[str, str]:
    """Parse ``k1=v1,k2=v2`` or a JSON object into a label mapping."""
    value = value.strip()
    if not value:
        return {}
    if value.startswith("{"):
        try:
            return {str(k): str(v) for k, v in json.loads(value).items()}
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid resource labels: {e}")
    labels = {}
    for pair in value.split(","):
        if not pair.strip():
            continue
        key, sep, label_value = pair.partition("=")
        if not sep:
            raise ConfigError(f"Invalid resource label '{pair}', expected key=value")
        labels[key.strip()] = label_value.strip()
    return labels


@dataclass
class ExportConfig:
    """Configuration read by the exporter.

    Attributes:
        enabled: Start publishing when the exporter starts.
        project_id: Backend project the metrics are written to.
        resource_type: Monitored resource type of every time series.
        resource_labels: Static labels added to the monitored resource.
        step_seconds: Interval between publish cycles.
        batch_size: Maximum time series per request (capped at 200).
        cumulative_enabled: Export counters as CUMULATIVE. When False every
            record is exported as GAUGE.
        metric_type_prefix: Namespace prepended to every metric type.
        max_workers: Partitions sent concurrently within one cycle.
        endpoint: Base URL of the monitoring REST API.
        timeout_seconds: Per-request timeout for the REST transport.
    """

    enabled: bool = True
    project_id: str = ""
    resource_type: str = "global"
    resource_labels: dict[str, str] = field(default_factory=dict)
    step_seconds: float = 60.0
    batch_size: int = 10000
    cumulative_enabled: bool = True
    metric_type_prefix: str = "custom.googleapis.com/"
    max_workers: int = 1
    endpoint: str = "https://monitoring.googleapis.com"
    timeout_seconds: float = 30.0

    @property
    def partition_size(self) -> int:
        return min(self.batch_size, TIMESERIES_PER_REQUEST_LIMIT)

    @property
    def project_name(self) -> str:
        return f"projects/{self.project_id}"

    @property
    def step_millis(self) -> int:
        return int(self.step_seconds * 1000)

    def validate(self) -> None:
        """Validate configuration values."""
        errors = []
        if self.enabled and not self.project_id:
            errors.append("project_id is required when export is enabled")
        if self.step_seconds <= 0:
            errors.append("step_seconds must be positive")
        if self.batch_size <= 0:
            errors.append("batch_size must be positive")
        if self.max_workers <= 0:
            errors.append("max_workers must be positive")
        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")
        if not self.resource_type:
            errors.append("resource_type must not be empty")
        if errors:
            raise ConfigError(errors)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "resource_labels" in values:
            labels = values["resource_labels"] or {}
            if isinstance(labels, str):
                labels = _parse_labels(labels)
            values["resource_labels"] = {str(k): str(v) for k, v in labels.items()}
        return cls(**values)

    @classmethod
    def from_environment(cls, prefix: str = DEFAULT_ENV_PREFIX) -> "ExportConfig":
        """Load from environment variables."""
        env = os.environ
        defaults = cls()
        try:
            return cls(
                enabled=_parse_bool(env.get(f"{prefix}ENABLED", "true")),
                project_id=env.get(f"{prefix}PROJECT_ID", defaults.project_id),
                resource_type=env.get(f"{prefix}RESOURCE_TYPE", defaults.resource_type),
                resource_labels=_parse_labels(env.get(f"{prefix}RESOURCE_LABELS", "")),
                step_seconds=float(env.get(f"{prefix}STEP_SECONDS", defaults.step_seconds)),
                batch_size=int(env.get(f"{prefix}BATCH_SIZE", defaults.batch_size)),
                cumulative_enabled=_parse_bool(env.get(f"{prefix}CUMULATIVE_ENABLED", "true")),
                metric_type_prefix=env.get(
                    f"{prefix}METRIC_TYPE_PREFIX", defaults.metric_type_prefix
                ),
                max_workers=int(env.get(f"{prefix}MAX_WORKERS", defaults.max_workers)),
                endpoint=env.get(f"{prefix}ENDPOINT", defaults.endpoint),
                timeout_seconds=float(
                    env.get(f"{prefix}TIMEOUT_SECONDS", defaults.timeout_seconds)
                ),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid environment configuration: {e}")

    @classmethod
    def from_file(cls, path: str | Path, section: str = "stackdriver") -> "ExportConfig":
        """Load from a YAML, JSON or TOML file.

        If the document has a top-level ``section`` key, only that mapping
        is used.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        content = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()
        try:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif suffix == ".json":
                data = json.loads(content)
            elif suffix == ".toml":
                data = tomllib.loads(content)
            else:
                raise ConfigError(f"Unsupported file format: {suffix}")
        except (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")
        if isinstance(data.get(section), dict):
            data = data[section]
        return cls.from_dict(data)
