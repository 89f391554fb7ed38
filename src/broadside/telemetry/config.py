"""Telemetry configuration helpers."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

from pydantic import BaseModel, Field

from .logger import init_logging
from .metrics import init_metrics
from .tracer import init_tracing

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(*names: str) -> bool | None:
    """Return the first boolean found among the given env vars."""
    for name in names:
        value = os.getenv(name)
        if value is not None:
            return value.strip().lower() in _TRUTHY
    return None


class TelemetryConfig(BaseModel):
    """Runtime configuration for telemetry exporters."""

    enable_tracing: bool = False
    enable_metrics: bool = False
    enable_logging: bool = False
    console_traces: bool = False
    otlp_endpoint: str | None = None
    service_name: str = "broadside"
    service_namespace: str = "game"
    log_level: str = "INFO"
    resource_attributes: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides: Any) -> "TelemetryConfig":
        """Construct config from env vars (`BROADSIDE_*` + `OTEL_*`)."""

        data: Dict[str, Any] = cls().model_dump()

        bool_fields = {
            "enable_tracing": ("BROADSIDE_ENABLE_TRACING", "OTEL_TRACES_ENABLED"),
            "enable_metrics": ("BROADSIDE_ENABLE_METRICS", "OTEL_METRICS_ENABLED"),
            "enable_logging": ("BROADSIDE_ENABLE_LOGGING", "OTEL_LOGS_ENABLED"),
            "console_traces": ("BROADSIDE_CONSOLE_TRACES",),
        }
        for field, env_names in bool_fields.items():
            env_value = env_flag(*env_names)
            if env_value is not None:
                data[field] = env_value

        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if endpoint:
            data["otlp_endpoint"] = endpoint.rstrip("/")

        level = os.getenv("BROADSIDE_LOG_LEVEL")
        if level:
            data["log_level"] = level.strip().upper()

        service_name = os.getenv("OTEL_SERVICE_NAME")
        if service_name:
            data["service_name"] = service_name

        resource_env = os.getenv("OTEL_RESOURCE_ATTRIBUTES")
        if resource_env:
            attrs = dict(data["resource_attributes"])
            for part in resource_env.split(","):
                if "=" not in part:
                    continue
                key, value = part.split("=", 1)
                attrs[key.strip()] = value.strip()
            data["resource_attributes"] = attrs

        data.update(overrides)
        return cls(**data)

    def resource(self) -> dict[str, str]:
        attributes = {
            "service.name": self.service_name,
            "service.namespace": self.service_namespace,
        }
        attributes.update(self.resource_attributes)
        return attributes


@lru_cache(maxsize=1)
def load_telemetry_config() -> TelemetryConfig:
    """Load and cache telemetry config from the environment."""

    return TelemetryConfig.from_env()


def init_telemetry(config: TelemetryConfig | None = None) -> TelemetryConfig:
    """Initialise telemetry subsystems according to the config flags."""

    resolved = config or load_telemetry_config()

    if resolved.enable_tracing:
        init_tracing(resolved)
    if resolved.enable_metrics:
        init_metrics(resolved)
    init_logging(resolved)
    return resolved
