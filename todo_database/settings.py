from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import SQL_DIR


class Settings(BaseModel):
    """
    Bootstrap settings loaded from environment variables.

    Env vars:
    - DB_NAME, DB_USER, DB_PASSWORD, DB_PORT: database, role and port to provision
    - PGDATA: server data directory
    - PG_ROOT: directory holding one sub-directory per installed PostgreSQL version
    - PG_BIN: explicit binary directory; skips version detection when set
    - PG_RUN_AS: OS account the server tools run as (through sudo)
    - SQL_DIR: directory holding schema.sql and seed.sql
    - DB_CONNECTION_FILE, POSTGRES_ENV_FILE: files written for downstream consumers
    - DB_READY_RETRIES: readiness probes before giving up
    - DB_STOP_TIMEOUT: seconds to wait for a live server to release its lock
    """

    model_config = ConfigDict(frozen=True)

    db_name: str = "myapp"
    db_user: str = "appuser"
    db_password: str = "dbuser123"
    db_port: int = Field(5001, ge=1, le=65535)
    data_dir: Path = Path("/var/lib/postgresql/data")
    pg_root: Path = Path("/usr/lib/postgresql")
    pg_bin: Optional[Path] = None
    run_as: str = "postgres"
    sql_dir: Path = SQL_DIR
    connection_file: Path = Path("db_connection.txt")
    env_file: Path = Path("db_visualizer/postgres.env")
    ready_retries: int = Field(30, ge=1)
    stop_timeout: float = Field(10.0, ge=0)
    socket_dirs: Tuple[Path, ...] = (Path("/var/run/postgresql"), Path("/tmp"))

    @field_validator("db_name", "db_user", "run_as")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        if "\x00" in value:
            raise ValueError("must not contain NUL characters")
        return value

    @property
    def log_file(self) -> Path:
        return self.data_dir / "startup.log"

    @property
    def schema_file(self) -> Path:
        return self.sql_dir / "schema.sql"

    @property
    def seed_file(self) -> Path:
        return self.sql_dir / "seed.sql"


# env var -> Settings field
_ENV_FIELDS = {
    "DB_NAME": "db_name",
    "DB_USER": "db_user",
    "DB_PASSWORD": "db_password",
    "DB_PORT": "db_port",
    "PGDATA": "data_dir",
    "PG_ROOT": "pg_root",
    "PG_BIN": "pg_bin",
    "PG_RUN_AS": "run_as",
    "SQL_DIR": "sql_dir",
    "DB_CONNECTION_FILE": "connection_file",
    "POSTGRES_ENV_FILE": "env_file",
    "DB_READY_RETRIES": "ready_retries",
    "DB_STOP_TIMEOUT": "stop_timeout",
}


# PUBLIC_INTERFACE
def get_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Return settings from environment variables; unset or empty values keep their defaults.

    Raises pydantic.ValidationError for values that do not parse.
    """
    env = os.environ if environ is None else environ
    values = {}
    for name, field in _ENV_FIELDS.items():
        raw = env.get(name)
        if raw is None or raw.strip() == "":
            continue
        # Passwords keep surrounding whitespace
        values[field] = raw if field == "db_password" else raw.strip()
    return Settings(**values)
