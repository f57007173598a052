import os
import json
from typing import Any, Dict, List, Sequence
from rich.console import Console
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_records(title: str, records: List[Dict[str, Any]], columns: Sequence[str]) -> None:
    """Print rows (dicts) according to the current output mode.
    - plain: one 'key=value' line per row, or 'No <title>.'
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    mode = get_output_mode()

    if mode == "json":
        payload = [{c: r.get(c) for c in columns} for r in records]
        print(json.dumps(payload, ensure_ascii=False))
        return

    if not records:
        print(f"No {title.lower()}.")
        return

    if mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for c in columns:
            table.add_column(c, style="magenta" if c == "id" else "white", no_wrap=(c == "id"))
        for r in records:
            table.add_row(*(str(r.get(c, "")) for c in columns))
        _console.print(table)
    else:
        for r in records:
            print(" ".join(f"{c}={r.get(c)}" for c in columns))


def print_message(message: str, style: str = "green") -> None:
    if get_output_mode() == "rich":
        _console.print(f"[{style}]{message}[/]")
    else:
        print(message)
