"""Post-setup checks against the provisioned database."""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .connection import client_url
from .models import Todo
from .settings import Settings


@dataclass
class TodoStats:
    table_exists: bool
    by_status: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_status.values())


async def inspect_todos(engine: AsyncEngine) -> TodoStats:
    """Check the todos table and count its rows per status."""
    table = Todo.__table__
    async with engine.connect() as conn:
        exists = await conn.run_sync(
            lambda sync_conn: inspect(sync_conn).has_table(table.name, schema=table.schema)
        )
        if not exists:
            return TodoStats(table_exists=False)

        result = await conn.execute(
            select(Todo.status, func.count()).group_by(Todo.status)
        )
        return TodoStats(table_exists=True, by_status={status: count for status, count in result})


async def _verify(settings: Settings) -> TodoStats:
    engine = create_async_engine(client_url(settings, "postgresql+asyncpg"))
    try:
        return await inspect_todos(engine)
    finally:
        await engine.dispose()


def verify_app_connection(settings: Settings) -> Tuple[Optional[TodoStats], str]:
    """Log in as the application user. Returns (stats, "") or (None, error message)."""
    try:
        return asyncio.run(_verify(settings)), ""
    except (SQLAlchemyError, OSError) as exc:
        return None, str(exc)
