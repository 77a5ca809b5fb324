"""Registry commands: push, pull, apply."""

from __future__ import annotations

import typer

from kubemft.cli.common import console, key_store, load_settings, open_repository, reporting_errors
from kubemft.core.context import OperationContext
from kubemft.workflows import ApplyOptions, PullOptions, apply, pull

_TIMEOUT_HELP = "Abort the whole transfer after this many seconds."


def push_cmd(
    reference: str = typer.Argument(..., help="Artifact reference, e.g. ghcr.io/org/app:v1."),
    timeout: float = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
) -> None:
    """Upload an artifact and its signatures to a registry."""
    repo = open_repository(reference, load_settings())
    with reporting_errors("push"):
        result = repo.push(OperationContext(timeout))
    console.print(
        f"[green]Pushed[/green] {repo.ref} [dim]{result.root.digest} "
        f"({len(result.copied)} uploaded, {len(result.skipped)} already present)[/dim]"
    )


def pull_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Skip signature verification."),
    timeout: float = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
) -> None:
    """Download an artifact and verify its signature."""
    settings = load_settings()
    repo = open_repository(reference, settings)
    with reporting_errors("pull"):
        verified = pull(
            repo, PullOptions(skip_verify=skip_verify), key_store(settings), OperationContext(timeout)
        )
    console.print(f"[green]Pulled[/green] {repo.ref}")
    if verified is not None:
        console.print(f"[green]Verified[/green] [dim]{verified.signature}[/dim]")


def apply_cmd(
    reference: str = typer.Argument(..., help="Artifact reference."),
    skip_verify: bool = typer.Option(False, "--skip-verify", help="Skip signature verification after pulling."),
    timeout: float = typer.Option(None, "--timeout", help=_TIMEOUT_HELP),
) -> None:
    """Apply an artifact to the current cluster, pulling it first if needed."""
    settings = load_settings()
    repo = open_repository(reference, settings)
    with reporting_errors("apply"):
        apply(
            repo,
            ApplyOptions(skip_verify=skip_verify),
            key_store(settings),
            context=OperationContext(timeout),
        )
