"""Connection details handed to the app and the database viewer."""
from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional

from sqlalchemy.engine import URL

from .settings import Settings


def client_url(settings: Settings, drivername: str = "postgresql") -> URL:
    return URL.create(
        drivername,
        username=settings.db_user,
        password=settings.db_password,
        host="localhost",
        port=settings.db_port,
        database=settings.db_name,
    )


def connection_command(settings: Settings) -> str:
    """psql invocation with credentials embedded, as saved to db_connection.txt."""
    url = client_url(settings).render_as_string(hide_password=False)
    return f"psql {url}"


def env_exports(settings: Settings) -> str:
    server_url = URL.create(
        "postgresql",
        host="localhost",
        port=settings.db_port,
        database=settings.db_name,
    ).render_as_string()
    values = {
        "POSTGRES_URL": server_url,
        "POSTGRES_USER": settings.db_user,
        "POSTGRES_PASSWORD": settings.db_password,
        "POSTGRES_DB": settings.db_name,
        "POSTGRES_PORT": str(settings.db_port),
    }
    return "".join(f"export {key}={shlex.quote(value)}\n" for key, value in values.items())


def write_connection_files(settings: Settings) -> List[Path]:
    """Write db_connection.txt and the env file. Returns the paths written."""
    written = []
    for path, content in (
        (settings.connection_file, connection_command(settings) + "\n"),
        (settings.env_file, env_exports(settings)),
    ):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        written.append(path)
    return written


def saved_connection_command(settings: Settings) -> Optional[str]:
    path = settings.connection_file
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8").strip() or None
