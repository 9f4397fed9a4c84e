"""Pydantic validation models for nativeproc configuration.

Defines the schema for YAML configuration files with validation
rules and sensible defaults.
"""

from typing import Dict, List, Any, Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator


class SinkSchema(BaseModel):
    """Configuration for an observability sink.

    Attributes:
        type: Sink type (file, console, memory, null).
        path: File path for file sinks.
        options: Additional sink-specific options.
    """

    type: Literal["file", "console", "memory", "null"] = "file"
    path: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_file_sink_has_path(self) -> "SinkSchema":
        """Validate that file sinks have a path."""
        if self.type == "file" and not self.path:
            raise ValueError("File sink requires 'path' to be set")
        return self


class ObservabilitySchema(BaseModel):
    """Configuration for observability/tracing.

    Attributes:
        level: Trace level (off, minimal, normal, verbose).
        sinks: List of sink configurations.
    """

    level: Literal["off", "minimal", "normal", "verbose"] = "off"
    sinks: List[SinkSchema] = Field(default_factory=list)


class ProcessConfig(BaseModel):
    """Configuration for one supervised worker process.

    Attributes:
        command: argv of the worker executable.
        cwd: Working directory for the worker.
        env: Extra environment variables for the worker.
        number_of_fields: Record width including the trailing control field.
        handshake: "assume" treats the worker as ready once its streams are
            attached; "log" waits for its first diagnostic line.
        handshake_timeout_sec: How long start() waits for the handshake.
        liveness_grace_ms: Grace period for is_process_alive_after_waiting().
        shutdown_timeout_sec: How long close() waits for a clean exit.
        output_drain_timeout_sec: How long to let the output reader drain
            after the worker exits before abandoning pending flushes.
        error_buffer_size: Maximum number of buffered error messages.
        restore: Create a restore state stream.
        persist: Create a persist state stream.
        flush_token_prefix: Salt prepended to every flush token.
        observability: Trace settings for this process.
    """

    command: List[str] = Field(min_length=1)
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    number_of_fields: int = Field(default=2, ge=1)
    handshake: Literal["assume", "log"] = "assume"
    handshake_timeout_sec: float = Field(default=10.0, gt=0)
    liveness_grace_ms: float = Field(default=45.0, gt=0)
    shutdown_timeout_sec: float = Field(default=5.0, ge=0)
    output_drain_timeout_sec: float = Field(default=1.0, ge=0)
    error_buffer_size: int = Field(default=100, ge=1)
    restore: bool = False
    persist: bool = False
    flush_token_prefix: str = ""
    observability: ObservabilitySchema = Field(default_factory=ObservabilitySchema)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: List[str]) -> List[str]:
        """Reject an empty executable name."""
        if not v[0].strip():
            raise ValueError("command executable must not be empty")
        return v


class ConfigSchema(BaseModel):
    """Root configuration schema.

    Attributes:
        version: Configuration file version (currently "1.0").
        processes: Mapping of process names to their configurations.
    """

    version: str = "1.0"
    processes: Dict[str, ProcessConfig] = Field(min_length=1)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        supported = {"1.0"}
        if v not in supported:
            raise ValueError(
                f"Unsupported config version: {v}. Supported: {supported}"
            )
        return v
