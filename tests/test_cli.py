"""Tests for the envbanner command line."""

from unittest.mock import patch

from click.testing import CliRunner

from envbanner import __version__
from envbanner.cli import main
from envbanner.config import ProxyConfig


def test_help():
    result = CliRunner().invoke(main, ["--help"])
    assert result.exit_code == 0
    for opt in ("--upstream", "--listen", "--message", "--color", "--verbose"):
        assert opt in result.output


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@patch("envbanner.cli.BannerProxy")
def test_defaults(mock_proxy_cls):
    proxy = mock_proxy_cls.return_value
    proxy.address = ("0.0.0.0", 8001)
    proxy.serve_forever.side_effect = KeyboardInterrupt

    result = CliRunner().invoke(main, [])
    assert result.exit_code == 0
    mock_proxy_cls.assert_called_once_with(ProxyConfig())
    proxy.close.assert_called_once()


@patch("envbanner.cli.BannerProxy")
def test_options_passed_through(mock_proxy_cls):
    proxy = mock_proxy_cls.return_value
    proxy.address = ("127.0.0.1", 9001)
    proxy.serve_forever.side_effect = KeyboardInterrupt

    result = CliRunner().invoke(main, [
        "-u", "https://backend.internal",
        "-l", "127.0.0.1:9001",
        "-m", "Staging",
        "-c", "orange",
    ])
    assert result.exit_code == 0
    mock_proxy_cls.assert_called_once_with(ProxyConfig(
        upstream="https://backend.internal",
        listen="127.0.0.1:9001",
        message="Staging",
        color="orange",
    ))
    assert "Staging" in result.output


def test_invalid_upstream_exits():
    result = CliRunner().invoke(main, ["--upstream", "ftp://backend"])
    assert result.exit_code == 1
    assert "Invalid upstream URL" in result.output


def test_invalid_listen_exits():
    result = CliRunner().invoke(main, ["--listen", "nowhere"])
    assert result.exit_code == 1
    assert "Invalid listen address" in result.output
