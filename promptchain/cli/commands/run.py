"""promptchain run — Execute a chain file from the command line."""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from promptchain.exceptions import ChainValidationError
from promptchain.types import ChainExecution

console = Console()

_STATUS_COLOR = {
    "succeeded": "green",
    "failed": "red",
    "stopped": "yellow",
    "success": "green",
    "error": "red",
    "running": "yellow",
}


def parse_vars(pairs: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` pairs.  Values are JSON when they parse, else strings."""
    inputs: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got {pair!r}", param_hint="--var")
        try:
            inputs[key.strip()] = json.loads(raw)
        except ValueError:
            inputs[key.strip()] = raw
    return inputs


def _build_engine(templates: Optional[Path], reply: Optional[str], model: Optional[str]):
    """Build a ChainEngine with an in-memory store; no network when --reply is given."""
    from promptchain.callbacks import LoggingCallback
    from promptchain.chains import InMemoryDefinitionStore, load_templates_file
    from promptchain.config import PromptChainConfig
    from promptchain.core import ChainEngine
    from promptchain.llm import LLMClient, StaticInferenceService

    cfg = PromptChainConfig()
    store = InMemoryDefinitionStore(
        config=cfg,
        templates=load_templates_file(templates) if templates else None,
    )
    if reply is not None:
        inference = StaticInferenceService(reply=reply)
    else:
        inference = LLMClient(model=model, config=cfg)
    return ChainEngine(
        inference_service=inference,
        definition_store=store,
        config=cfg,
        callbacks=[LoggingCallback()],
    )


def _print_execution(execution: ChainExecution, chain_name: str) -> None:
    status = execution.status.value
    color = _STATUS_COLOR.get(status, "white")
    summary = (
        f"[bold]Chain:[/bold] {chain_name} [dim]v{execution.chain_version}[/dim]\n"
        f"[bold]Run:[/bold] [dim]{execution.id}[/dim]\n"
        f"[bold]Status:[/bold] [{color}]{status.upper()}[/{color}]  "
        f"[dim]{execution.termination.value if execution.termination else ''} — "
        f"{len(execution.log)} step(s)[/dim]"
    )
    if execution.error:
        summary += f"\n[bold]Error:[/bold] [red]{execution.error}[/red]"
    console.print()
    console.print(Panel(summary, title="[bold blue]Run Summary[/bold blue]", border_style="blue"))

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Node", style="cyan")
    table.add_column("Type", style="dim", width=10)
    table.add_column("Status", width=8)
    table.add_column("ms", width=8, justify="right")
    table.add_column("Output / Error")
    for i, entry in enumerate(execution.log, 1):
        entry_color = _STATUS_COLOR.get(entry.status.value, "white")
        label = entry.node_name or entry.node_id
        if entry.iteration is not None:
            label += f" [dim][{entry.iteration}][/dim]"
        if entry.attempt > 1:
            label += f" [dim](attempt {entry.attempt})[/dim]"
        detail = entry.error if entry.error else json.dumps(entry.output, default=str)
        table.add_row(
            str(i),
            label,
            entry.node_type.value if entry.node_type else "",
            f"[{entry_color}]{entry.status.value}[/{entry_color}]",
            f"{entry.duration_ms:.1f}" if entry.duration_ms is not None else "",
            detail[:80],
        )
    console.print(table)


async def _execute(
    chain_file: Path,
    inputs: dict[str, Any],
    templates: Optional[Path],
    reply: Optional[str],
    model: Optional[str],
) -> tuple[ChainExecution, str]:
    from promptchain.chains import load_chain_file

    chain = load_chain_file(chain_file)
    engine = _build_engine(templates, reply, model)
    with console.status(f"[blue]Running:[/blue] {chain.name or chain.id}"):
        execution = await engine.run(chain, inputs=inputs)
    return execution, chain.name or chain.id


def run_chain(
    chain_file: Path = typer.Argument(..., help="Chain definition (.json, .yaml or .yml)"),
    var: list[str] = typer.Option([], "--var", help="Run input as key=value (repeatable)"),
    templates: Optional[Path] = typer.Option(None, "--templates", "-t", help="Prompt templates file"),
    reply: Optional[str] = typer.Option(
        None, "--reply", help="Answer every prompt with this text instead of calling an LLM"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="litellm model string"),
    as_json: bool = typer.Option(False, "--json", help="Print the execution record as JSON"),
):
    """Run a chain file and print the step log.

    Exits 1 when the run fails or the chain is invalid.

    Example:
        promptchain run examples/summarise.yaml -t examples/templates.yaml --var topic=rust --reply "ok"
        promptchain run examples/summarise.yaml -t examples/templates.yaml --model ollama/llama3 --json
    """
    inputs = parse_vars(var)
    try:
        execution, chain_name = asyncio.run(_execute(chain_file, inputs, templates, reply, model))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise typer.Exit(1)
    except ChainValidationError as exc:
        console.print(f"\n[red]Invalid chain:[/red] {exc}")
        for violation in exc.violations:
            console.print(f"  [red]•[/red] {violation}")
        raise typer.Exit(1)
    except Exception as exc:
        console.print(f"\n[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(execution.model_dump_json(indent=2))
    else:
        _print_execution(execution, chain_name)

    if execution.status.value == "failed":
        raise typer.Exit(1)
