"""Version command for nativeproc CLI."""

import sys
from importlib.metadata import version, PackageNotFoundError


def cmd_version() -> int:
    """Display version information.

    Returns:
        Exit code (always 0).
    """
    try:
        np_version = version("nativeproc")
    except PackageNotFoundError:
        np_version = "development"

    print(f"nativeproc {np_version}")
    print(f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")

    print("\nDependencies:")

    deps = [
        ("pyyaml", "YAML config support"),
        ("pydantic", "Config validation"),
    ]

    for pkg, desc in deps:
        try:
            pkg_version = version(pkg)
            status = f"v{pkg_version}"
        except PackageNotFoundError:
            status = "not installed"
        print(f"  {pkg}: {status} ({desc})")

    return 0
