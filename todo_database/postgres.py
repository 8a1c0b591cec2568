"""Thin wrappers around the PostgreSQL command line tools."""
from __future__ import annotations

import getpass
import re
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .lockfile import LOCK_FILE_NAME, LockFile
from .settings import Settings

Runner = Callable[..., subprocess.CompletedProcess]


class PostgresNotFound(RuntimeError):
    """No usable PostgreSQL installation was found."""


class DataDirectoryUnreadable(RuntimeError):
    """A file in the data directory exists but the server account cannot read it."""


def _version_key(name: str):
    return tuple(int(part) for part in re.findall(r"\d+", name)), name


def detect_version(pg_root: Path) -> str:
    """
    Return the newest version directory installed under pg_root
    (e.g. /usr/lib/postgresql/16).
    """
    if not pg_root.is_dir():
        raise PostgresNotFound(f"PostgreSQL install root {pg_root} does not exist")
    versions = [entry.name for entry in pg_root.iterdir() if entry.is_dir()]
    if not versions:
        raise PostgresNotFound(f"No PostgreSQL versions found under {pg_root}")
    return max(versions, key=_version_key)


class PostgresTools:
    """
    Runs pg_isready, pg_ctl, initdb, createdb and psql for one data
    directory and port, as the configured OS account.
    """

    def __init__(
        self,
        bin_dir: Path,
        data_dir: Path,
        port: int,
        run_as: Optional[str] = None,
        version: Optional[str] = None,
        runner: Runner = subprocess.run,
    ) -> None:
        self.bin_dir = Path(bin_dir)
        self.data_dir = Path(data_dir)
        self.port = port
        self.run_as = run_as
        self.version = version
        self._runner = runner

    @classmethod
    def locate(cls, settings: Settings, runner: Runner = subprocess.run) -> "PostgresTools":
        if settings.pg_bin is not None:
            bin_dir = settings.pg_bin
            version = bin_dir.parent.name or None
        else:
            version = detect_version(settings.pg_root)
            bin_dir = settings.pg_root / version / "bin"
        if not (bin_dir / "pg_ctl").exists():
            raise PostgresNotFound(f"pg_ctl not found in {bin_dir}")
        return cls(
            bin_dir=bin_dir,
            data_dir=settings.data_dir,
            port=settings.db_port,
            run_as=settings.run_as,
            version=version,
            runner=runner,
        )

    def _as_owner(self, cmd: List[str]) -> List[str]:
        if self.run_as and self.run_as != getpass.getuser():
            return ["sudo", "-u", self.run_as, *cmd]
        return cmd

    def command(self, tool: str, *args: str) -> List[str]:
        """Full argv for a server tool, including the sudo prefix."""
        return self._as_owner([str(self.bin_dir / tool), *args])

    def run(
        self,
        tool: str,
        *args: str,
        check: bool = False,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        return self._runner(
            self.command(tool, *args),
            input=input,
            capture_output=True,
            text=True,
            check=check,
        )

    # Probes

    def is_ready(self) -> bool:
        return self.run("pg_isready", "-p", str(self.port)).returncode == 0

    def is_initialized(self) -> bool:
        return self.path_exists(self.data_dir / "PG_VERSION", "-f")

    def data_dir_exists(self) -> bool:
        return self.path_exists(self.data_dir, "-d")

    def server_process_running(self) -> bool:
        """True when some postgres process was started on this data directory."""
        pattern = f"postgres .* -D {self.data_dir}"
        try:
            result = self._runner(["pgrep", "-f", pattern], capture_output=True, text=True)
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def can_connect(self, database: str) -> bool:
        return self.run("psql", "-p", str(self.port), "-d", database, "-c", r"\q").returncode == 0

    def status(self) -> bool:
        """pg_ctl status: True when a server we own is running on the data directory."""
        return self.run("pg_ctl", "-D", str(self.data_dir), "status").returncode == 0

    def listeners(self) -> str:
        try:
            result = self._runner(["ss", "-ltnp"], capture_output=True, text=True)
        except FileNotFoundError:
            return "ss not available"
        lines = [line for line in result.stdout.splitlines() if f":{self.port}" in line]
        return "\n".join(lines) if lines else "none"

    # Server lifecycle

    def initdb(self) -> subprocess.CompletedProcess:
        return self.run("initdb", "-D", str(self.data_dir), check=True)

    def start(self, log_file: Path) -> subprocess.CompletedProcess:
        return self.run(
            "pg_ctl",
            "-D", str(self.data_dir),
            "-o", f"-p {self.port}",
            "-l", str(log_file),
            "start",
            check=True,
        )

    def stop(self, mode: str = "fast") -> bool:
        return self.run("pg_ctl", "-D", str(self.data_dir), "stop", "-m", mode).returncode == 0

    # Data directory files. PGDATA is readable only by the server account.

    def _owner_run(self, *cmd: str) -> subprocess.CompletedProcess:
        return self._runner(self._as_owner(list(cmd)), capture_output=True, text=True)

    def path_exists(self, path: Path, kind: str = "-e") -> bool:
        """test(1) as the server account; kind is -e, -f or -d."""
        return self._owner_run("test", kind, str(path)).returncode == 0

    def read_file(self, path: Path) -> Optional[str]:
        """Contents of path, or None when it does not exist."""
        if not self.path_exists(path, "-f"):
            return None
        result = self._owner_run("cat", "--", str(path))
        if result.returncode != 0:
            raise DataDirectoryUnreadable(f"Cannot read {path}: {result.stderr.strip()}")
        return result.stdout

    def read_lock(self) -> Optional[LockFile]:
        path = self.data_dir / LOCK_FILE_NAME
        text = self.read_file(path)
        return None if text is None else LockFile.parse(path, text)

    def tail(self, path: Path, lines: int) -> Optional[str]:
        result = self._owner_run("tail", "-n", str(lines), "--", str(path))
        return result.stdout if result.returncode == 0 else None

    def remove(self, paths: Sequence[Path]) -> bool:
        """rm -f as the server account, which owns lock and socket files."""
        if not paths:
            return True
        cmd = self._as_owner(["rm", "-f", "--", *(str(p) for p in paths)])
        return self._runner(cmd, capture_output=True, text=True).returncode == 0

    # SQL

    def psql_args(self, database: str) -> List[str]:
        return ["-X", "-v", "ON_ERROR_STOP=1", "-p", str(self.port), "-d", database]

    def psql_file(self, database: str, path: Path) -> subprocess.CompletedProcess:
        """Run a SQL file. It is read here and piped in, so the server account needs no access to it."""
        return self.psql_script(database, Path(path).read_text(encoding="utf-8"))

    def psql_script(self, database: str, script: str) -> subprocess.CompletedProcess:
        return self.run("psql", *self.psql_args(database), input=script)

    def query_value(self, database: str, sql: str) -> str:
        """First column of the first row, as text ('' when there are no rows)."""
        result = self.run("psql", *self.psql_args(database), "-tA", input=sql, check=True)
        lines = result.stdout.strip().splitlines()
        return lines[0].strip() if lines else ""

    def createdb(self, name: str) -> subprocess.CompletedProcess:
        return self.run("createdb", "-p", str(self.port), name, check=True)
