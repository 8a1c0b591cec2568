import subprocess
import time
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event

from todo_database import startup
from todo_database.db import TodoStats
from todo_database.lockfile import LOCK_FILE_NAME, LockFile
from todo_database.settings import Settings


def sql_statements(path: Path):
    """Statements of a plain SQL file, comment lines dropped."""
    lines = [line for line in path.read_text().splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def attach_public(path: Path):
    """connect listener mounting a second SQLite file as schema 'public'."""
    def _attach(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"ATTACH DATABASE '{path}' AS public")
        cursor.close()
    return _attach


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeTools:
    """Stands in for PostgresTools; the 'server' is a flag."""

    def __init__(self, data_dir: Path, port: int = 5001):
        self.bin_dir = Path("/usr/lib/postgresql/16/bin")
        self.version = "16"
        self.data_dir = data_dir
        self.port = port
        self.calls = []
        self.scripts = []
        self.removed = []
        self.running = False
        self.start_makes_ready = True
        self.process_running = False
        self.connectable = False
        self.owns_lock = False
        self.existing = {}
        self.psql_file_returncode = 0

    def is_ready(self):
        self.calls.append("is_ready")
        return self.running

    def path_exists(self, path, kind="-e"):
        return Path(path).exists()

    def is_initialized(self):
        return (self.data_dir / "PG_VERSION").is_file()

    def data_dir_exists(self):
        return self.data_dir.is_dir()

    def read_lock(self):
        path = self.data_dir / LOCK_FILE_NAME
        if not path.is_file():
            return None
        return LockFile.parse(path, path.read_text())

    def tail(self, path, lines):
        return None

    def server_process_running(self):
        return self.process_running

    def can_connect(self, database):
        self.calls.append("can_connect")
        return self.connectable

    def status(self):
        self.calls.append("status")
        return self.owns_lock

    def listeners(self):
        return "none"

    def initdb(self):
        self.calls.append("initdb")
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "PG_VERSION").write_text("16\n")
        return completed()

    def start(self, log_file):
        self.calls.append("start")
        if self.start_makes_ready:
            self.running = True
        return completed()

    def stop(self, mode="fast"):
        self.calls.append("stop")
        (self.data_dir / "postmaster.pid").unlink()
        return True

    def remove(self, paths):
        self.calls.append("remove")
        self.removed.extend(paths)
        for path in paths:
            Path(path).unlink(missing_ok=True)
        return True

    def psql_file(self, database, path):
        self.calls.append(f"psql_file:{Path(path).name}")
        return completed(self.psql_file_returncode, stderr="boom" if self.psql_file_returncode else "")

    def psql_script(self, database, script):
        self.scripts.append((database, script))
        return completed(stdout="List of schemas")

    def query_value(self, database, sql):
        for key, value in self.existing.items():
            if key in sql:
                return value
        return ""

    def createdb(self, name):
        self.calls.append("createdb")
        return completed()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        connection_file=tmp_path / "db_connection.txt",
        env_file=tmp_path / "db_visualizer" / "postgres.env",
        socket_dirs=(tmp_path / "run",),
        ready_retries=3,
        stop_timeout=0,
    )


@pytest.fixture
def tools(settings):
    return FakeTools(settings.data_dir, settings.db_port)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda seconds: None)


@pytest.fixture
def verified(monkeypatch):
    stats = TodoStats(table_exists=True, by_status={"pending": 1, "done": 1})
    monkeypatch.setattr(startup, "verify_app_connection", lambda settings: (stats, ""))
    return stats


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'main.db'}")
    event.listen(engine, "connect", attach_public(tmp_path / "public.db"))
    yield engine
    engine.dispose()
