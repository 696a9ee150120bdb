"""promptchain CLI — Typer application."""

import logging

import typer
from rich.console import Console

from promptchain.version import __version__

app = typer.Typer(
    name="promptchain",
    help="promptchain — run graph-based prompt chains from the command line.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """promptchain CLI."""
    from promptchain.config import PromptChainConfig

    logging.basicConfig(
        level=PromptChainConfig().log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if version:
        console.print(f"promptchain v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


from promptchain.cli.commands import config, run, validate  # noqa: E402

app.command(name="run", help="Run a chain file")(run.run_chain)
app.command(name="validate", help="Check a chain file for structural errors")(validate.validate_chain)
app.command(name="config", help="Show resolved configuration")(config.config_show)


if __name__ == "__main__":
    app()
