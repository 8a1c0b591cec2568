"""SQL for the application role, its database and its grants."""
from __future__ import annotations

from typing import List

from .settings import Settings

DEFAULT_PRIVILEGE_OBJECTS = ("TABLES", "SEQUENCES", "FUNCTIONS", "TYPES")
EXISTING_OBJECTS = ("TABLES", "SEQUENCES", "FUNCTIONS")


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def database_exists_sql(name: str) -> str:
    return f"SELECT 1 FROM pg_catalog.pg_database WHERE datname = {quote_literal(name)};\n"


def role_exists_sql(name: str) -> str:
    return f"SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = {quote_literal(name)};\n"


def role_sql(settings: Settings, exists: bool) -> str:
    """
    Create the login role, or reset the password of an existing one,
    then grant it the database.
    """
    user = quote_ident(settings.db_user)
    verb = "ALTER" if exists else "CREATE"
    lines = [
        f"{verb} ROLE {user} WITH LOGIN PASSWORD {quote_literal(settings.db_password)};",
        f"GRANT ALL PRIVILEGES ON DATABASE {quote_ident(settings.db_name)} TO {user};",
    ]
    return "\n".join(lines) + "\n"


def schema_grants_sql(settings: Settings) -> str:
    """Grants on schema public; run inside the application database."""
    user = quote_ident(settings.db_user)
    lines: List[str] = [
        f"GRANT USAGE ON SCHEMA public TO {user};",
        f"GRANT CREATE ON SCHEMA public TO {user};",
        f"GRANT ALL ON SCHEMA public TO {user};",
    ]
    lines += [
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA public GRANT ALL ON {kind} TO {user};"
        for kind in DEFAULT_PRIVILEGE_OBJECTS
    ]
    lines += [
        f"GRANT ALL PRIVILEGES ON ALL {kind} IN SCHEMA public TO {user};"
        for kind in EXISTING_OBJECTS
    ]
    lines.append(r"\dn+ public")
    return "\n".join(lines) + "\n"
