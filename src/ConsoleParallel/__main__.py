"""Command line entry point: ``python -m ConsoleParallel``."""

from __future__ import annotations

import typer

from ConsoleParallel.commands.hash_files import hash_files

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
    help="Batch commands that fan their items out to child processes.",
)


@app.callback()
def _root() -> None:
    """Batch commands that fan their items out to child processes."""


app.command("hash-files")(hash_files)


def main() -> None:
    """Entry point used by ``python -m ConsoleParallel``."""

    app()


if __name__ == "__main__":  # pragma: no cover - manual execution guard
    main()
