"""Shared CLI plumbing: consoles, settings, logging and error reporting."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import typer
from rich.console import Console
from rich.logging import RichHandler

from kubemft.config import MftSettings
from kubemft.core.repository import Repository
from kubemft.errors import MftError
from kubemft.signature.keys import KeyStore

console = Console()
err_console = Console(stderr=True)


def load_settings() -> MftSettings:
    return MftSettings()


def open_repository(reference: str, settings: MftSettings) -> Repository:
    try:
        return Repository(reference, settings)
    except ValueError as exc:
        err_console.print(f"[bold red]Invalid reference:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc


def key_store(settings: MftSettings) -> KeyStore:
    return KeyStore(settings.key_dir)


def configure_logging(level: str) -> None:
    """Route kubemft logs through rich on stderr."""
    root = logging.getLogger("kubemft")
    root.handlers.clear()
    root.addHandler(RichHandler(console=err_console, show_path=False, rich_tracebacks=True))
    root.setLevel(level.upper())


@contextmanager
def reporting_errors(action: str) -> Iterator[None]:
    """Print kubemft errors as one red line and exit non-zero."""
    try:
        yield
    except MftError as exc:
        err_console.print(f"[bold red]{action} failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        err_console.print(f"[bold red]{action} failed:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc
