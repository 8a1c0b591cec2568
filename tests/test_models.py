import asyncio

import pytest
from sqlalchemy import event, func, insert, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.schema import CreateTable

from todo_database import SQL_DIR
from todo_database.db import inspect_todos
from todo_database.models import Base, Todo

from conftest import attach_public, sql_statements


def seed(conn):
    for statement in sql_statements(SQL_DIR / "seed.sql"):
        conn.exec_driver_sql(statement)


class TestSqlFiles:
    def test_schema_statements_carry_if_not_exists_guards(self):
        # Textual check: schema.sql uses PostgreSQL-only DDL (identity column,
        # CREATE SCHEMA) that SQLite cannot execute. Re-running the table DDL
        # is covered by test_create_all_twice.
        statements = sql_statements(SQL_DIR / "schema.sql")
        assert len(statements) == 3
        for statement in statements:
            assert statement.upper().startswith("CREATE")
            assert "IF NOT EXISTS" in statement.upper()

    def test_model_matches_schema(self):
        ddl = str(CreateTable(Todo.__table__).compile(dialect=postgresql.dialect()))
        assert "public.todos" in ddl
        assert "GENERATED ALWAYS AS IDENTITY" in ddl
        assert "CONSTRAINT todos_status_check CHECK (status IN ('pending', 'done'))" in ddl
        assert "description TEXT DEFAULT '' NOT NULL" in ddl


class TestTodosTable:
    def test_seed_is_idempotent(self, sqlite_engine):
        Base.metadata.create_all(sqlite_engine)
        with sqlite_engine.begin() as conn:
            seed(conn)
            seed(conn)
            rows = conn.execute(select(Todo.title, Todo.status).order_by(Todo.id)).all()
        assert rows == [("Sample Task 1", "pending"), ("Sample Task 2", "done")]

    def test_create_all_twice(self, sqlite_engine):
        Base.metadata.create_all(sqlite_engine)
        Base.metadata.create_all(sqlite_engine)
        with sqlite_engine.connect() as conn:
            assert conn.execute(select(func.count()).select_from(Todo)).scalar() == 0

    def test_server_defaults(self, sqlite_engine):
        Base.metadata.create_all(sqlite_engine)
        with sqlite_engine.begin() as conn:
            conn.exec_driver_sql("INSERT INTO public.todos (title) VALUES ('Write tests')")
            row = conn.execute(select(Todo.id, Todo.description, Todo.status)).one()
        assert row == (1, "", "pending")

    def test_status_constraint(self, sqlite_engine):
        Base.metadata.create_all(sqlite_engine)
        with pytest.raises(IntegrityError):
            with sqlite_engine.begin() as conn:
                conn.execute(insert(Todo).values(title="Archive", status="archived"))


class TestInspectTodos:
    def _engine(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'main.db'}")
        event.listen(engine.sync_engine, "connect", attach_public(tmp_path / "public.db"))
        return engine

    def test_counts_by_status(self, tmp_path):
        async def scenario():
            engine = self._engine(tmp_path)
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
                    await conn.run_sync(seed)
                return await inspect_todos(engine)
            finally:
                await engine.dispose()

        stats = asyncio.run(scenario())
        assert stats.table_exists is True
        assert stats.by_status == {"pending": 1, "done": 1}
        assert stats.total == 2

    def test_missing_table(self, tmp_path):
        async def scenario():
            engine = self._engine(tmp_path)
            try:
                return await inspect_todos(engine)
            finally:
                await engine.dispose()

        stats = asyncio.run(scenario())
        assert stats.table_exists is False
        assert stats.total == 0
