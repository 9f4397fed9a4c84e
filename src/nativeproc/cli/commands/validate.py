"""Validate command for nativeproc CLI."""

import sys
from pathlib import Path

from nativeproc.config import load_yaml_config, ConfigLoadError


def cmd_validate(config_path: str) -> int:
    """Validate a configuration file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Exit code (0 for success, 1 for validation errors).
    """
    path = Path(config_path)

    if not path.exists():
        print(f"Error: Configuration file not found: {path}", file=sys.stderr)
        return 1

    print(f"Validating: {path}")

    try:
        config = load_yaml_config(path)
    except ConfigLoadError as e:
        print(f"Validation failed: {e}", file=sys.stderr)
        return 1

    print(f"  Version: {config.version}")
    print(f"  Processes: {len(config.processes)}")

    for name, process in config.processes.items():
        print(f"\n  Process '{name}':")
        print(f"    Command: {' '.join(process.command)}")
        if process.cwd:
            print(f"    Working directory: {process.cwd}")
        print(f"    Fields: {process.number_of_fields}")
        print(f"    Handshake: {process.handshake} ({process.handshake_timeout_sec}s)")
        print(f"    Liveness grace: {process.liveness_grace_ms}ms")

        streams = [s for s, enabled in (("restore", process.restore), ("persist", process.persist)) if enabled]
        print(f"    State streams: {', '.join(streams) if streams else 'none'}")
        print(f"    Observability: {process.observability.level}")

        if process.observability.sinks:
            print(f"    Sinks: {len(process.observability.sinks)}")
            for sink in process.observability.sinks:
                sink_info = sink.type
                if sink.path:
                    sink_info += f" -> {sink.path}"
                print(f"      - {sink_info}")

    print("\nConfiguration is valid.")
    return 0
