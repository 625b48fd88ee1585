"""
Tests for version lookup.
"""
import re
from importlib import metadata as importlib_metadata
from unittest.mock import patch

from intent_relayer import __version__
from intent_relayer.version import DEFAULT_VERSION, DISTRIBUTION, get_version, user_agent


def _pyproject(tmp_path, body):
    path = tmp_path / "pyproject.toml"
    path.write_text(body)
    return path


def test_version_format():
    assert re.match(r'^\d+\.\d+\.\d+', __version__), "Version should follow semantic versioning"


def test_checkout_version_wins(tmp_path):
    path = _pyproject(tmp_path, f'[project]\nname = "{DISTRIBUTION}"\nversion = "1.2.3"\n')
    with patch("importlib.metadata.version", return_value="2.3.4"):
        assert get_version(path) == "1.2.3"


def test_foreign_pyproject_is_ignored(tmp_path):
    """A pyproject.toml for another project falls through to installed metadata"""
    path = _pyproject(tmp_path, '[project]\nname = "something-else"\nversion = "9.9.9"\n')
    with patch("importlib.metadata.version", return_value="2.3.4"):
        assert get_version(path) == "2.3.4"


def test_installed_metadata_without_checkout(tmp_path):
    with patch("importlib.metadata.version", return_value="2.3.4") as mock_version:
        assert get_version(tmp_path / "missing.toml") == "2.3.4"
    mock_version.assert_called_once_with(DISTRIBUTION)


@patch("importlib.metadata.version", side_effect=importlib_metadata.PackageNotFoundError)
def test_default_when_nothing_is_found(mock_version, tmp_path):
    assert get_version(tmp_path / "missing.toml") == DEFAULT_VERSION


@patch("importlib.metadata.version", side_effect=importlib_metadata.PackageNotFoundError)
def test_invalid_toml_falls_back(mock_version, tmp_path):
    path = _pyproject(tmp_path, "not [valid toml")
    assert get_version(path) == DEFAULT_VERSION


@patch("importlib.metadata.version", side_effect=importlib_metadata.PackageNotFoundError)
def test_missing_version_key_falls_back(mock_version, tmp_path):
    path = _pyproject(tmp_path, f'[project]\nname = "{DISTRIBUTION}"\n')
    assert get_version(path) == DEFAULT_VERSION


def test_user_agent():
    assert user_agent() == f"intent-relayer/{__version__}"
