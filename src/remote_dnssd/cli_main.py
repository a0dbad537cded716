#!/usr/bin/env python3
"""remote-dnssd CLI"""

import logging

import typer
from rich.logging import RichHandler

from . import __version__
from .commands.discover import discover_app

app = typer.Typer(
    name="remote-dnssd",
    help="Advertise and discover remote servers on the local network",
    add_completion=False,
)

# 発見・公開用サブコマンド
app.add_typer(discover_app, name="discover")


def setup_logging(verbose: bool = False) -> None:
    """ログ出力を rich で整形（--verbose で DEBUG）"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # zeroconf 自体のデバッグログは冗長なので抑える
    logging.getLogger("zeroconf").setLevel(logging.WARNING)


@app.callback()
def app_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    setup_logging(verbose)


@app.command()
def version():
    """Show version information."""
    typer.echo(f"remote-dnssd {__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
