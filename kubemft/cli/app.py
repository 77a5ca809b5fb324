"""Main Typer application: imports and registers all CLI commands.

Entry point: ``kubectl-mft`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from kubemft import __version__
from kubemft.cli.commands.artifacts import (
    cp_cmd,
    delete_cmd,
    dump_cmd,
    gc_cmd,
    list_cmd,
    pack_cmd,
    path_cmd,
)
from kubemft.cli.commands.remote import apply_cmd, pull_cmd, push_cmd
from kubemft.cli.commands.schema import schema_app
from kubemft.cli.commands.signing import key_app, sign_cmd, verify_cmd
from kubemft.cli.common import configure_logging, load_settings

app = typer.Typer(
    name="kubectl-mft",
    help="Store, sign and distribute Kubernetes manifests as OCI artifacts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kubectl-mft {__version__}")
        raise typer.Exit()


@app.callback()
def root(
    log_level: str = typer.Option(
        None, "--log-level", help="Log level (default: KUBECTL_MFT_LOG_LEVEL or WARNING)."
    ),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show the version."
    ),
) -> None:
    configure_logging(log_level or load_settings().log_level)


# Register subcommands
app.command(name="pack", help="Save a manifest file as a signed artifact.")(pack_cmd)
app.command(name="dump", help="Print a stored manifest.")(dump_cmd)
app.command(name="path", help="Print the path of a stored manifest.")(path_cmd)
app.command(name="list", help="List stored artifacts.")(list_cmd)
app.command(name="delete", help="Delete an artifact tag.")(delete_cmd)
app.command(name="cp", help="Copy an artifact to another reference.")(cp_cmd)
app.command(name="gc", help="Remove unreachable blobs from a repository.")(gc_cmd)
app.command(name="push", help="Push an artifact to a registry.")(push_cmd)
app.command(name="pull", help="Pull an artifact from a registry.")(pull_cmd)
app.command(name="apply", help="Apply an artifact to the current cluster.")(apply_cmd)
app.command(name="sign", help="Sign a stored artifact.")(sign_cmd)
app.command(name="verify", help="Verify an artifact's signature.")(verify_cmd)
app.add_typer(key_app, name="key")
app.add_typer(schema_app, name="schema")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
