"""Tests for the insforge-mcp command line."""

import pytest

from insforge_mcp import cli
from insforge_mcp.core.errors import BackendUnreachable
from insforge_mcp.http import app as http_app
from insforge_mcp.mcp import registry as registry_module
from insforge_mcp.version import __version__


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda log_config: None)
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("API_BASE_URL", raising=False)


def test_parser_reads_credentials():
    args = cli.build_parser().parse_args(["--api_key", "ik_cli", "--api_base_url", "http://cli.test"])
    assert args.api_key == "ik_cli"
    assert args.api_base_url == "http://cli.test"
    assert args.command is None


def test_parser_http_subcommand():
    args = cli.build_parser().parse_args(["http", "--port", "4000"])
    assert args.command == "http"
    assert args.port == 4000
    assert args.host is None


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_stdio_exits_when_backend_unreachable(monkeypatch):
    created = []

    class UnreachableRegistry:
        def __init__(self, config):
            self.config = config
            self.closed = False
            created.append(self)

        def register_all(self):
            raise BackendUnreachable("Failed to reach InsForge backend at http://down.test: refused")

        def close(self):
            self.closed = True

    monkeypatch.setattr(registry_module, "ToolRegistry", UnreachableRegistry)

    assert cli.main(["--api_key", "ik_cli", "--api_base_url", "http://down.test"]) == 1
    assert created[0].config.backend.api_key == "ik_cli"
    assert created[0].config.backend.api_base_url == "http://down.test"
    assert created[0].closed


def test_http_command_applies_host_and_port(monkeypatch):
    seen = []
    monkeypatch.setattr(http_app, "run_server", seen.append)

    assert cli.main(["http", "--host", "0.0.0.0", "--port", "4000"]) == 0

    assert seen[0].http.host == "0.0.0.0"
    assert seen[0].http.port == 4000
