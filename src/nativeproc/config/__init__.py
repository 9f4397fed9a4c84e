"""Configuration system for nativeproc.

Provides YAML-based declarative process configuration with:
- Pydantic schema validation
- Environment variable substitution (${VAR} and ${VAR:-default})
- Runtime object conversion (observability sinks, controllers)

Example YAML config:
    version: "1.0"
    processes:
      autodetect:
        command: ["${WORKER_HOME:-/opt/worker}/bin/autodetect", "--bucket-span=300"]
        number_of_fields: 3
        handshake: log
        restore: true
        persist: true
        liveness_grace_ms: 45
        observability:
          level: normal
          sinks:
            - type: file
              path: "${LOG_DIR:-./logs}/trace.jsonl"

Example usage:
    >>> from nativeproc.config import load_yaml_config
    >>> config = load_yaml_config("processes.yaml")
    >>> for name, process in config.processes.items():
    ...     print(f"Process: {name}")
"""

from nativeproc.config.schema import (
    ConfigSchema,
    ProcessConfig,
    ObservabilitySchema,
    SinkSchema,
)
from nativeproc.config.loader import (
    load_yaml_config,
    load_yaml_string,
    substitute_env_vars,
    build_sinks,
    configure_observability,
)
from nativeproc.errors import ConfigLoadError

__all__ = [
    # Schema models
    "ConfigSchema",
    "ProcessConfig",
    "ObservabilitySchema",
    "SinkSchema",
    # Loader
    "load_yaml_config",
    "load_yaml_string",
    "substitute_env_vars",
    "build_sinks",
    "configure_observability",
    "ConfigLoadError",
]
