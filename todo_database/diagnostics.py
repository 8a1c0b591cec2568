"""State dumps printed when the server cannot be started."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .postgres import DataDirectoryUnreadable, PostgresTools
from .settings import Settings

LOG_TAIL_LINES = 50


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def collect(settings: Settings, tools: PostgresTools) -> List[Tuple[str, str]]:
    rows = [
        ("Date", datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")),
        ("Data dir exists?", _yes_no(tools.data_dir_exists())),
        ("PG_VERSION file?", _yes_no(tools.is_initialized())),
    ]
    try:
        lock = tools.read_lock()
    except DataDirectoryUnreadable as e:
        rows.append(("postmaster.pid exists?", f"yes, unreadable ({e})"))
    else:
        rows.append(("postmaster.pid exists?", _yes_no(lock is not None)))
        if lock is not None:
            rows.append(("postmaster.pid contents", "\n".join(lock.head()) or "(empty)"))
    rows.append((f"Listeners on {settings.db_port}", tools.listeners()))
    return rows


def show(console: Console, settings: Settings, tools: PostgresTools) -> None:
    table = Table(title="Diagnostics", show_header=False, title_justify="left")
    table.add_column(style="bold")
    table.add_column()
    for label, value in collect(settings, tools):
        table.add_row(label, value)
    console.print(table)


def show_failure(console: Console, settings: Settings, tools: PostgresTools) -> None:
    """Diagnostics, the end of the server log and troubleshooting tips."""
    show(console, settings, tools)
    console.print(f"[dim]Last {LOG_TAIL_LINES} lines of server log ({settings.log_file}):[/dim]")
    tail = tools.tail(settings.log_file, LOG_TAIL_LINES)
    console.print(tail.rstrip("\n") if tail else "(log not available)", markup=False, highlight=False)
    port = settings.db_port
    console.print(Panel(
        f"- Ensure the port {port} is free: ss -ltnp | grep :{port}\n"
        f"- Check ownership/permissions of {settings.data_dir}\n"
        f"- Remove stale {settings.data_dir / 'postmaster.pid'} if no postgres is running",
        title="Troubleshooting tips",
        border_style="yellow",
    ))
