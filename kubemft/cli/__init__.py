"""kubectl-mft CLI: Typer-based command-line interface.

Provides the ``kubectl-mft`` command (``kubectl mft`` as a kubectl plugin)
with subcommands for packing, listing, copying, pushing, pulling, signing
and applying manifests.

All output uses Rich for formatted terminal display.
"""
