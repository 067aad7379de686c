"""Ensure runtime/server/package versions stay in sync."""

from pathlib import Path
import tomllib

from conftest import make_config
from insforge_mcp.http.app import create_app
from insforge_mcp.version import __version__


def test_version_single_source_of_truth():
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    with pyproject_path.open("rb") as f:
        pyproject = tomllib.load(f)

    assert pyproject["project"]["version"] == __version__
    assert create_app(make_config()).version == __version__
