"""promptchain validate — Structural check of a chain file."""

from pathlib import Path

import typer
from rich.console import Console

from promptchain.chains.validator import ChainValidator, hard_errors
from promptchain.exceptions import ChainValidationError

console = Console()


def validate_chain(
    chain_file: Path = typer.Argument(..., help="Chain definition (.json, .yaml or .yml)"),
):
    """Print every violation and warning for a chain file.

    Exits 1 when the chain has hard errors.

    Example:
        promptchain validate examples/summarise.yaml
    """
    from promptchain.chains.loader import load_chain_file
    from promptchain.config import PromptChainConfig

    try:
        chain = load_chain_file(chain_file)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)
    except ChainValidationError as exc:
        console.print(f"[red]✗[/red] {exc}")
        for violation in exc.violations:
            console.print(f"  [red]•[/red] {violation}")
        raise typer.Exit(1)

    errors = ChainValidator().validate(chain, max_nodes=PromptChainConfig().max_chain_nodes)
    hard = hard_errors(errors)
    for error in errors:
        if error in hard:
            console.print(f"  [red]•[/red] {error}")
        else:
            console.print(f"  [yellow]•[/yellow] {error[len('WARNING: '):]}")

    label = chain.name or chain.id
    if hard:
        console.print(f"[red]✗[/red] {label}: {len(hard)} error(s)")
        raise typer.Exit(1)
    console.print(
        f"[green]✓[/green] {label}: valid "
        f"[dim]({len(chain.nodes)} node(s), {len(chain.edges)} edge(s), "
        f"{len(errors)} warning(s))[/dim]"
    )
