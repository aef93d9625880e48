import json
import os
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.panel import Panel
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


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def print_rows(rows: List[Dict[str, Any]], columns: Sequence[str], title: str,
               empty_message: str = "No results.") -> None:
    """Print report or listing rows in the current output mode.

    - plain: one ' | '-separated line per row
    - json: JSON array of objects restricted to ``columns``
    - rich: Rich table
    """
    mode = get_output_mode()

    if not rows:
        print(empty_message)
        return

    if mode == "json":
        payload = [{c: row.get(c) for c in columns} for row in rows]
        print(json.dumps(payload, ensure_ascii=False, default=_json_default))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for c in columns:
            table.add_column(c, no_wrap=(c in {"isbn", "id", "registration"}))
        for row in rows:
            table.add_row(*[_cell(row.get(c)) for c in columns])
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join(_cell(row.get(c)) for c in columns))


def print_stats_result(stats: Dict[str, Any]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "total_users": "Total Users",
        "open_loans": "Open Loans",
        "overdue_loans": "Overdue Loans",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
