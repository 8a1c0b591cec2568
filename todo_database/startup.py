import subprocess
import sys
import time
from typing import Optional

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from . import diagnostics
from .connection import connection_command, saved_connection_command, write_connection_files
from .db import verify_app_connection
from .lockfile import LockFile, stale_files
from .postgres import DataDirectoryUnreadable, PostgresNotFound, PostgresTools
from .provision import database_exists_sql, role_exists_sql, role_sql, schema_grants_sql
from .settings import Settings, get_settings

EXIT_OK = 0
EXIT_FAILED = 1

console = Console()


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )


def _step(number: int, title: str) -> None:
    console.print(Panel(f"[bold]Step {number}:[/bold] {title}", style="cyan", border_style="dim"))


def _stderr(result) -> str:
    text = result.stderr if result.stderr else ""
    if isinstance(text, bytes):
        text = text.decode(errors="replace")
    return text.strip()[:500]


def print_connection_info(settings: Settings) -> None:
    console.print(f"Database: {settings.db_name}")
    console.print(f"User: {settings.db_user}")
    console.print(f"Port: {settings.db_port}")
    console.print()
    console.print("To connect to the database, use:")
    console.print(
        f"psql -h localhost -U {settings.db_user} -d {settings.db_name} -p {settings.db_port}",
        markup=False,
    )


def check_existing_server(settings: Settings, tools: PostgresTools) -> bool:
    """
    True when a usable server is already up, either answering on the port
    or holding the data directory with the database reachable.
    """
    if tools.is_ready():
        console.print(f"[green]✓ PostgreSQL is already running on port {settings.db_port}!")
        print_connection_info(settings)
        saved = saved_connection_command(settings)
        if saved:
            console.print(f"Or use: {saved}", markup=False)
        console.print()
        console.print("[dim]Script stopped - server already running.[/dim]")
        return True

    if tools.server_process_running():
        console.print(f"[yellow]⚠ Detected a postgres process using data dir {settings.data_dir}.")
        console.print(f"[dim]   Attempting a quick connectivity check on port {settings.db_port}...[/dim]")
        if tools.can_connect(settings.db_name):
            console.print(f"[green]✓ Database {settings.db_name} is accessible. Exiting.")
            return True
    return False


def initialize_data_directory(settings: Settings, tools: PostgresTools) -> bool:
    if tools.is_initialized():
        console.print(f"[dim]   Data directory {settings.data_dir} already initialized[/dim]")
        return True

    with _spinner() as progress:
        task = progress.add_task(f"[cyan]Initializing data directory at {settings.data_dir}...", total=None)
        try:
            tools.initdb()
        except subprocess.CalledProcessError as e:
            progress.update(task, description="[red]✗ initdb failed")
            progress.stop_task(task)
            console.print(f"[dim]Error: {_stderr(e)}[/dim]")
            return False
        progress.update(task, description="[green]✓ Data directory initialized")
        progress.stop_task(task)
    return True


def _wait_for_release(settings: Settings, tools: PostgresTools) -> Optional[LockFile]:
    """Poll until lock disappears or its owner exits. Returns the lock as last seen."""
    deadline = time.monotonic() + settings.stop_timeout
    current = tools.read_lock()
    while current is not None and current.owner_alive() and time.monotonic() < deadline:
        time.sleep(0.5)
        current = tools.read_lock()
    return current


def remove_stale_lock(lock: LockFile, settings: Settings, tools: PostgresTools) -> bool:
    console.print("[yellow]⚠ postmaster.pid appears stale (no active PID). Cleaning up...")
    try:
        paths = stale_files(lock, settings.db_port, settings.socket_dirs)
    except ValueError as e:
        console.print(f"[red]✗ {e}. Refusing to remove it.")
        return False
    tools.remove(paths)
    if tools.path_exists(lock.path):
        console.print(f"[red]✗ Could not remove {lock.path}")
        return False
    console.print("[green]✓ Removed stale lock and socket files")
    return True


def recover_lock(settings: Settings, tools: PostgresTools) -> Optional[int]:
    """
    Deal with a postmaster.pid left in the data directory.

    Returns None to continue with startup, or the exit code to stop with.
    A lock whose owner is still alive is never removed.
    """
    lock = tools.read_lock()
    if lock is None:
        return None

    console.print(f"[dim]   Detected {lock.path}. Checking if it is stale...[/dim]")
    if not lock.owner_alive():
        return None if remove_stale_lock(lock, settings, tools) else EXIT_FAILED

    console.print(f"[yellow]⚠ A process with PID {lock.pid} is running. It may be a live postgres.")
    diagnostics.show(console, settings, tools)

    if tools.status():
        console.print(f"[dim]   Attempting 'pg_ctl stop -m fast' on {settings.data_dir}...[/dim]")
        tools.stop("fast")
        lock = _wait_for_release(settings, tools)

    if tools.is_ready():
        console.print("[yellow]⚠ Postgres still appears to be running. Exiting safely.")
        return EXIT_OK

    if lock is not None and lock.owner_alive():
        console.print(
            f"[red]✗ {lock.path} is held by live process {lock.pid}. "
            f"Refusing to remove it; ensure no other postgres is using {settings.data_dir}."
        )
        return EXIT_FAILED

    if lock is not None:
        return None if remove_stale_lock(lock, settings, tools) else EXIT_FAILED
    return None


def wait_until_ready(tools: PostgresTools, retries: int) -> bool:
    with _spinner() as progress:
        task = progress.add_task("[cyan]Waiting for PostgreSQL to start...", total=None)
        for attempt in range(1, retries + 1):
            if tools.is_ready():
                progress.update(task, description="[green]✓ PostgreSQL is ready!")
                progress.stop_task(task)
                return True
            time.sleep(2 if attempt == 1 else 1)
            progress.update(task, description=f"[cyan]Waiting... ({attempt}/{retries})")
        progress.update(task, description=f"[red]✗ PostgreSQL not ready after {retries} attempts")
        progress.stop_task(task)
    return False


def start_server(settings: Settings, tools: PostgresTools) -> bool:
    with _spinner() as progress:
        task = progress.add_task("[cyan]Starting PostgreSQL server...", total=None)
        try:
            tools.start(settings.log_file)
            progress.update(task, description="[green]✓ Server start requested")
            progress.stop_task(task)
        except subprocess.CalledProcessError as e:
            progress.update(task, description="[red]✗ pg_ctl start failed")
            progress.stop_task(task)
            console.print(f"[dim]Error: {_stderr(e)}[/dim]")
            return False

    if wait_until_ready(tools, settings.ready_retries):
        return True
    console.print(f"[red]ERROR: PostgreSQL failed to become ready on port {settings.db_port}.")
    return False


def create_database(settings: Settings, tools: PostgresTools) -> bool:
    try:
        if tools.query_value("postgres", database_exists_sql(settings.db_name)) == "1":
            console.print(f"[dim]   Database {settings.db_name} already exists[/dim]")
            return True
        tools.createdb(settings.db_name)
    except subprocess.CalledProcessError as e:
        console.print(f"[yellow]⚠ Could not create database {settings.db_name}")
        console.print(f"[dim]Error: {_stderr(e)}[/dim]")
        return False
    console.print(f"[green]✓ Created database {settings.db_name}")
    return True


def apply_sql_files(settings: Settings, tools: PostgresTools) -> None:
    """Apply schema.sql then seed.sql. Failures are reported and skipped."""
    with _spinner() as progress:
        for path in (settings.schema_file, settings.seed_file):
            task = progress.add_task(f"[cyan]Applying {path.name}...", total=None)
            if not path.is_file():
                progress.update(task, description=f"[yellow]⚠ Skipping {path.name} - file not found")
                progress.stop_task(task)
                continue

            try:
                result = tools.psql_file(settings.db_name, path)
            except OSError as e:
                progress.update(task, description=f"[yellow]⚠ Could not read {path.name} (continuing)")
                progress.stop_task(task)
                console.print(f"[dim]Error: {e}[/dim]")
                continue
            if result.returncode == 0:
                progress.update(task, description=f"[green]✓ Applied {path.name}")
            else:
                progress.update(task, description=f"[yellow]⚠ Failed to apply {path.name} (continuing)")
                console.print(f"[dim]Error: {_stderr(result)}[/dim]")
            progress.stop_task(task)


def provision_user(settings: Settings, tools: PostgresTools) -> None:
    """Create or update the application role and grant it the database."""
    try:
        exists = tools.query_value("postgres", role_exists_sql(settings.db_user)) == "1"
    except subprocess.CalledProcessError as e:
        console.print(f"[yellow]⚠ Could not look up role {settings.db_user}")
        console.print(f"[dim]Error: {_stderr(e)}[/dim]")
        exists = False

    result = tools.psql_script("postgres", role_sql(settings, exists))
    if result.returncode == 0:
        action = "Updated" if exists else "Created"
        console.print(f"[green]✓ {action} role {settings.db_user}")
    else:
        console.print(f"[yellow]⚠ Role setup for {settings.db_user} reported errors")
        console.print(f"[dim]Error: {_stderr(result)}[/dim]")

    result = tools.psql_script(settings.db_name, schema_grants_sql(settings))
    if result.returncode == 0:
        console.print("[green]✓ Granted schema privileges")
        if result.stdout:
            console.print(result.stdout.rstrip(), markup=False, highlight=False, style="dim")
    else:
        console.print("[yellow]⚠ Schema grants reported errors")
        console.print(f"[dim]Error: {_stderr(result)}[/dim]")


def write_outputs(settings: Settings) -> None:
    try:
        written = write_connection_files(settings)
    except OSError as e:
        console.print(f"[yellow]⚠ Could not write connection files: {e}")
        return
    for path in written:
        console.print(f"[green]✓ Saved {path}")


def verify(settings: Settings) -> None:
    stats, error = verify_app_connection(settings)
    if stats is None:
        console.print(f"[yellow]⚠ Could not connect as {settings.db_user}")
        console.print(f"[dim]   {error}[/dim]")
    elif not stats.table_exists:
        console.print(f"[yellow]⚠ Connected as {settings.db_user}, but public.todos is missing")
    else:
        counts = ", ".join(f"{status}={count}" for status, count in sorted(stats.by_status.items()))
        console.print(f"[green]✓ Connected as {settings.db_user}: {stats.total} todos ({counts or 'empty'})")


def run(settings: Settings, tools: PostgresTools) -> int:
    """
    Bootstrap workflow:
    1. Exit early when a server is already up
    2. Initialize the data directory, recover from a stale lock
    3. Start the server and wait for it
    4. Create the database, apply schema.sql and seed.sql
    5. Provision the role and its grants
    6. Write connection files and verify the login
    """
    console.print(f"[dim]Data directory: {settings.data_dir}[/dim]")
    console.print(f"[dim]Using binaries from: {tools.bin_dir} (version {tools.version or 'unknown'})[/dim]")
    console.print()

    if check_existing_server(settings, tools):
        return EXIT_OK

    _step(1, "Preparing Data Directory")
    if not initialize_data_directory(settings, tools):
        diagnostics.show_failure(console, settings, tools)
        return EXIT_FAILED
    code = recover_lock(settings, tools)
    if code is not None:
        return code
    console.print()

    _step(2, "Starting PostgreSQL")
    if not start_server(settings, tools):
        diagnostics.show_failure(console, settings, tools)
        return EXIT_FAILED
    console.print()

    _step(3, "Applying Schema and Seed Data")
    if create_database(settings, tools):
        apply_sql_files(settings, tools)
    console.print()

    _step(4, "Provisioning Database User")
    provision_user(settings, tools)
    console.print()

    _step(5, "Writing Connection Files")
    write_outputs(settings)
    verify(settings)
    console.print()

    console.print(Panel.fit(
        "[bold green]✓ PostgreSQL setup complete![/bold green]\n"
        f"[dim]Database: {settings.db_name}\n"
        f"User: {settings.db_user}\n"
        f"Port: {settings.db_port}[/dim]",
        border_style="green",
        padding=(1, 2),
    ))
    console.print(f"Environment variables saved to {settings.env_file}")
    console.print(f"To use with Node.js viewer, run: source {settings.env_file}", markup=False)
    print_connection_info(settings)
    console.print(connection_command(settings), markup=False)
    return EXIT_OK


def main() -> int:
    console.print()
    console.print(Panel.fit(
        "[bold cyan]Todo Database Startup[/bold cyan]\n"
        "[dim]Bootstraps the PostgreSQL server backing the todo app[/dim]",
        border_style="cyan",
        padding=(1, 2),
    ))
    console.print()

    try:
        settings = get_settings()
        tools = PostgresTools.locate(settings)
        console.print(f"Starting PostgreSQL setup on port {settings.db_port}...")
        return run(settings, tools)
    except ValidationError as e:
        console.print(Panel(f"[bold red]✗ Invalid configuration[/bold red]\n[dim]{e}[/dim]", border_style="red"))
        return EXIT_FAILED
    except PostgresNotFound as e:
        console.print(Panel(f"[bold red]✗ PostgreSQL not found[/bold red]\n[dim]{e}[/dim]", border_style="red"))
        return EXIT_FAILED
    except DataDirectoryUnreadable as e:
        console.print(Panel(f"[bold red]✗ Data directory not readable[/bold red]\n[dim]{e}[/dim]", border_style="red"))
        return EXIT_FAILED
    except KeyboardInterrupt:
        console.print()
        console.print(Panel("[bold yellow]⚠ Startup Interrupted[/bold yellow]\n"
                           "Startup was cancelled by user",
                           border_style="yellow"))
        raise


if __name__ == "__main__":
    sys.exit(main())
