"""
envbanner CLI
==============
Command-line entry point: parse options, bind, and serve until interrupted.
"""

from __future__ import annotations

import logging
import sys

import click
from rich.logging import RichHandler

from envbanner import __version__
from envbanner.config import (
    DEFAULT_COLOR,
    DEFAULT_LISTEN,
    DEFAULT_MESSAGE,
    DEFAULT_UPSTREAM,
    ProxyConfig,
)
from envbanner.core.proxy import BannerProxy
from envbanner.errors import StartupError
from envbanner.ui import console, print_error, print_info, print_warning, show_startup


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ── Main CLI ─────────────────────────────────────────────────────────────────

@click.command()
@click.option("--upstream", "-u", default=DEFAULT_UPSTREAM, show_default=True, help="Upstream URL")
@click.option("--listen", "-l", default=DEFAULT_LISTEN, show_default=True, help="Listen on address")
@click.option("--message", "-m", default=DEFAULT_MESSAGE, show_default=True, help="Banner message")
@click.option("--color", "-c", default=DEFAULT_COLOR, show_default=True, help="CSS color of banner")
@click.option("--verbose", "-v", is_flag=True, help="Log every request and injection")
@click.version_option(__version__, prog_name="envbanner")
def main(upstream, listen, message, color, verbose):
    """Stamp an environment banner on every HTML page served by UPSTREAM."""
    _setup_logging(verbose)

    try:
        config = ProxyConfig.build(upstream=upstream, listen=listen, message=message, color=color)
        proxy = BannerProxy(config)
    except StartupError as e:
        print_error(str(e))
        sys.exit(1)

    show_startup(config, proxy.address)
    print_info("Press Ctrl+C to stop")

    try:
        proxy.serve_forever()
    except KeyboardInterrupt:
        print_warning("Shutting down")
    finally:
        proxy.close()


if __name__ == "__main__":
    main()
