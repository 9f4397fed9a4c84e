"""YAML configuration loader with environment variable substitution.

Environment variable syntax:
    ${VAR}          - Required variable, raises error if not set
    ${VAR:-default} - Optional variable with default value

Example:
    >>> config = load_yaml_config("processes.yaml")
    >>> for name, process in config.processes.items():
    ...     print(f"{name}: {' '.join(process.command)}")
"""

import os
import re
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import ValidationError

from nativeproc.config.schema import ConfigSchema, ObservabilitySchema
from nativeproc.errors import ConfigLoadError
from nativeproc.observability import (
    ObservabilityHub,
    TraceLevel,
    Sink,
    FileSink,
    ConsoleSink,
    MemorySink,
    NullSink,
)


# Pattern for environment variables: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute environment variables in a value.

    Raises:
        KeyError: If a required environment variable is not set.

    Examples:
        >>> os.environ["WORKER_HOME"] = "/opt/worker"
        >>> substitute_env_vars("${WORKER_HOME}/bin/autodetect")
        '/opt/worker/bin/autodetect'
        >>> substitute_env_vars("${MISSING:-default}")
        'default'
    """
    if isinstance(value, str):
        return _substitute_string(value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    else:
        return value


def _substitute_string(s: str) -> str:
    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None if no default specified

        value = os.environ.get(var_name)
        if value is not None:
            return value
        elif default is not None:
            return default
        else:
            raise KeyError(
                f"Environment variable '{var_name}' is not set "
                f"and no default provided"
            )

    return ENV_VAR_PATTERN.sub(replacer, s)


def load_yaml_config(
    path: Union[str, Path],
    substitute_vars: bool = True,
) -> ConfigSchema:
    """Load and validate a YAML configuration file.

    Raises:
        ConfigLoadError: If the file cannot be parsed or validated.
        FileNotFoundError: If the config file doesn't exist.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}: {e}") from e

    return _validate(raw_data, substitute_vars, source=str(path))


def load_yaml_string(
    content: str,
    substitute_vars: bool = True,
) -> ConfigSchema:
    """Load and validate a YAML configuration from a string.

    Raises:
        ConfigLoadError: If the content cannot be parsed or validated.
    """
    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML: {e}") from e

    return _validate(raw_data, substitute_vars, source="<string>")


def _validate(raw_data: Any, substitute_vars: bool, source: str) -> ConfigSchema:
    if raw_data is None:
        raise ConfigLoadError(f"Empty configuration: {source}")

    if not isinstance(raw_data, dict):
        raise ConfigLoadError(
            f"Configuration must be a dictionary, got {type(raw_data).__name__}"
        )

    if substitute_vars:
        try:
            raw_data = substitute_env_vars(raw_data)
        except KeyError as e:
            raise ConfigLoadError(f"Environment variable error: {e}") from e

    try:
        return ConfigSchema.model_validate(raw_data)
    except ValidationError as e:
        raise ConfigLoadError(f"Configuration validation failed: {e}") from e


def build_sinks(schema: ObservabilitySchema) -> List[Sink]:
    """Create the sinks described by an observability section."""
    sinks: List[Sink] = []
    for sink in schema.sinks:
        if sink.type == "file":
            sinks.append(FileSink(sink.path, **sink.options))
        elif sink.type == "console":
            sinks.append(ConsoleSink(**sink.options))
        elif sink.type == "memory":
            sinks.append(MemorySink(**sink.options))
        else:
            sinks.append(NullSink())
    return sinks


def configure_observability(
    schema: ObservabilitySchema,
    hub: Optional[ObservabilityHub] = None,
) -> ObservabilityHub:
    """Apply an observability section to ``hub`` (the global hub by default)."""
    hub = hub or ObservabilityHub.get_instance()
    level = TraceLevel.from_string(schema.level)
    hub.configure(level=level, sinks=build_sinks(schema) if level > TraceLevel.OFF else None)
    return hub
