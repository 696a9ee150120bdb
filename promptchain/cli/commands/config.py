"""promptchain config — Show resolved configuration."""

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def config_show():
    """Show the resolved promptchain configuration.

    Reads from environment variables and .env file.
    API keys are masked.

    Example:
        promptchain config
    """
    from promptchain.config import PromptChainConfig
    cfg = PromptChainConfig()

    def mask(val: str) -> str:
        s = str(val)
        if len(s) <= 8:
            return "***"
        return s[:4] + "…" + "***"

    sensitive = {"llm_api_key"}

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title="[bold]promptchain Configuration[/bold]",
    )
    table.add_column("Key", style="cyan", width=30)
    table.add_column("Value", width=40)
    table.add_column("Env Var", style="dim", width=40)

    sections = [
        ("App", ["debug", "log_level"]),
        ("LLM", [
            "default_llm_model", "llm_api_key", "llm_max_tokens",
            "llm_temperature", "llm_timeout_seconds",
        ]),
        ("Node Timeouts (ms)", [
            "prompt_timeout_ms", "condition_timeout_ms", "function_timeout_ms",
            "transform_timeout_ms", "loop_timeout_ms", "parallel_timeout_ms",
            "output_timeout_ms",
        ]),
        ("Error Handling", ["retry_backoff_multiplier", "max_retry_delay_ms"]),
        ("Limits", ["max_chain_nodes", "max_loop_iterations", "parallel_max_concurrency"]),
        ("Expressions", ["strict_prompt_variables"]),
    ]

    first = True
    for section_name, fields in sections:
        if not first:
            table.add_row("", "", "")
        first = False
        table.add_row(f"[bold dim]── {section_name} ──[/bold dim]", "", "")
        for attr in fields:
            val = getattr(cfg, attr, None)
            if val is None:
                display = "[dim](not set)[/dim]"
            elif attr in sensitive:
                display = mask(str(val))
            else:
                display = str(val)
            table.add_row(f"  {attr}", display, f"PROMPTCHAIN_{attr.upper()}")

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Source: environment variables + .env file (prefix: PROMPTCHAIN_)[/dim]")
