"""
Version information for the intent relayer.

A source checkout reports the version in its pyproject.toml; an installed
relay reports its distribution metadata.
"""
import importlib.metadata
import pathlib
from typing import Optional

import tomli

DISTRIBUTION = "intent-relayer"
DEFAULT_VERSION = "0.1.0"
PYPROJECT_PATH = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"


def _checkout_version(pyproject: pathlib.Path) -> Optional[str]:
    try:
        with pyproject.open("rb") as f:
            project = tomli.load(f).get("project", {})
    except (OSError, tomli.TOMLDecodeError):
        return None
    # an unrelated pyproject.toml next to site-packages is not ours
    if project.get("name") != DISTRIBUTION:
        return None
    return project.get("version")


def _installed_version() -> Optional[str]:
    try:
        return importlib.metadata.version(DISTRIBUTION)
    except importlib.metadata.PackageNotFoundError:
        return None


def get_version(pyproject: pathlib.Path = PYPROJECT_PATH) -> str:
    return _checkout_version(pyproject) or _installed_version() or DEFAULT_VERSION


def user_agent() -> str:
    """User-Agent sent with every RPC request"""
    return f"{DISTRIBUTION}/{__version__}"


__version__ = get_version()
