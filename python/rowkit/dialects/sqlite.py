"""SQLite dialect driver."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING, Any

import aiosqlite

from rowkit.driver import ColumnType, Driver
from rowkit.errors import ValidationError
from rowkit.fields import ColumnBinding, StorageKind
from rowkit.migrations.ddl import recreate_table

if TYPE_CHECKING:
    from rowkit.schema import TableSchema

logger = logging.getLogger(__name__)

_TYPES = {
    StorageKind.BOOL: "numeric",
    StorageKind.INT: "integer",
    StorageKind.UINT: "integer",
    StorageKind.FLOAT: "real",
    StorageKind.STRING: "text",
    StorageKind.TIME: "datetime",
    StorageKind.BYTES: "blob",
    StorageKind.JSON: "text",
}

# Defaults for NOT NULL columns added to tables that may already hold rows
_ZERO_DEFAULTS = {
    StorageKind.BOOL: "0",
    StorageKind.INT: "0",
    StorageKind.UINT: "0",
    StorageKind.FLOAT: "0",
    StorageKind.STRING: "''",
    StorageKind.TIME: "'0001-01-01 00:00:00'",
    StorageKind.BYTES: "X''",
    StorageKind.JSON: "'null'",
}

_SIZE = re.compile(r"\(\s*(\d+)")


def _zero_default(binding: ColumnBinding) -> str:
    if binding.kind is StorageKind.JSON:
        target = binding.python_type
        if isinstance(target, type) and issubclass(target, list):
            return "'[]'"
        return "'{}'"
    return _ZERO_DEFAULTS[binding.kind]


class SqliteDriver(Driver):
    """Driver for SQLite through aiosqlite.

    SQLite has no ALTER/DROP COLUMN for constrained columns, so both go
    through a table rebuild (see ``rowkit.migrations.ddl``).
    """

    name = "sqlite3"

    @classmethod
    async def connect(cls, dsn: str, **kwargs: Any) -> aiosqlite.Connection:
        # Autocommit; transactions are opened explicitly with BEGIN
        kwargs.setdefault("isolation_level", None)
        return await aiosqlite.connect(dsn, **kwargs)

    def data_type_of(self, binding: ColumnBinding) -> str:
        if binding.kind in (StorageKind.INT, StorageKind.UINT) and binding.primary_key and binding.auto_increment:
            # https://www.sqlite.org/autoinc.html
            return "integer PRIMARY KEY AUTOINCREMENT"
        if binding.kind is StorageKind.STRING:
            size = self.effective_size(binding)
            return f"varchar({size})" if size else "text"
        return _TYPES[binding.kind]

    def insert_excludes(self, binding: ColumnBinding, value: Any) -> bool:
        return binding.primary_key and binding.auto_increment and not value

    async def _count(self, sql: str, *args: Any) -> int:
        rows = await self.executor.query(sql, *args)
        return int(await rows.scalar() or 0)

    async def has_table(self, table: str) -> bool:
        return await self._count("SELECT count(*) FROM sqlite_master WHERE type = 'table' AND name = ?", table) > 0

    async def has_column(self, table: str, column: str) -> bool:
        return any(c.name == column for c in await self.column_types(table))

    async def has_index(self, table: str, column: str) -> bool:
        return await self._count(
            "SELECT count(*) FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND name = ?",
            table,
            self.index_name(table, column),
        ) > 0

    async def column_types(self, table: str) -> list[ColumnType]:
        rows = await self.executor.query(f"PRAGMA table_info({self.quote(table)})")
        result = []
        for _cid, name, data_type, notnull, default, pk in await rows.rows([]):
            m = _SIZE.search(data_type or "")
            result.append(
                ColumnType(
                    name=name,
                    data_type=(data_type or "").split("(", 1)[0].strip().lower(),
                    size=int(m.group(1)) if m else None,
                    nullable=not notnull,
                    primary_key=pk > 0,
                    default=default,
                )
            )
        return result

    async def get_tables(self) -> list[str]:
        rows = await self.executor.query("SELECT name FROM sqlite_master WHERE type = ?", "table")
        return [name for name in await rows.rows([], str) if not name.startswith("sqlite_")]

    async def current_database(self) -> str:
        rows = await self.executor.query("PRAGMA database_list")
        _seq, name, _file = await rows.row()
        return name

    def _column_clause(self, binding: ColumnBinding) -> str:
        return f"{self.quote(binding.name)} {self.full_data_type_of(binding)}"

    async def create_table(self, schema: TableSchema) -> None:
        bindings = list(schema.fields)
        primary_keys = [b for b in bindings if b.primary_key]
        if len(primary_keys) > 1:
            # AUTOINCREMENT only works on a single-column key
            bindings = [dataclasses.replace(b, auto_increment=False) for b in bindings]

        clauses = [self._column_clause(b) for b in bindings]
        if primary_keys and not any("PRIMARY KEY" in self.data_type_of(b) for b in bindings):
            clauses.append(f"PRIMARY KEY ({', '.join(self.quote(b.name) for b in primary_keys)})")

        sql = f"CREATE TABLE {self.quote(schema.name)} ({', '.join(clauses)})"
        if schema.options:
            sql += " " + ", ".join(schema.options)
        if schema.comment:
            logger.warning("sqlite ignores the comment of table %s", schema.name)

        await self.executor.exec(sql)
        logger.info("created table %s", schema.name)

        for binding in bindings:
            if binding.index:
                await self.create_index(schema, binding.name)

    async def drop_table(self, table: str) -> None:
        await self.executor.exec(f"DROP TABLE IF EXISTS {self.quote(table)}")

    def _binding(self, schema: TableSchema, column: str) -> ColumnBinding:
        binding = schema.fields.get(column)
        if binding is None:
            raise ValidationError(f"failed to look up field with name {column!r} in {schema.name!r}")
        return binding

    async def add_column(self, schema: TableSchema, column: str) -> None:
        binding = self._binding(schema, column)

        if binding.unique or binding.primary_key:
            # ALTER TABLE ADD cannot add UNIQUE or PRIMARY KEY columns
            clause = self._column_clause(binding)
            await recreate_table(self.executor, schema.name, lambda doc: doc.add_column(clause))
            return

        if binding.not_null and binding.server_default is None:
            binding = dataclasses.replace(binding, server_default=_zero_default(binding))

        await self.executor.exec(f"ALTER TABLE {self.quote(schema.name)} ADD {self._column_clause(binding)}")

    async def drop_column(self, table: str, column: str) -> None:
        def mutate(doc):
            if not doc.remove_column(column):
                raise ValidationError(f"column {column!r} not found in {table!r}")

        await recreate_table(self.executor, table, mutate)

    async def alter_column(self, schema: TableSchema, column: str) -> None:
        binding = self._binding(schema, column)
        clause = self._column_clause(binding)

        def mutate(doc):
            if not doc.replace_column(binding.name, clause):
                raise ValidationError(f"column {column!r} not found in {schema.name!r}")

        await recreate_table(self.executor, schema.name, mutate)

    async def create_index(self, schema: TableSchema, column: str) -> None:
        binding = self._binding(schema, column)
        sql = "CREATE "
        if binding.index_class:
            sql += f"{binding.index_class} "
        sql += (
            f"INDEX {self.quote(self.index_name(schema.name, binding.name))} "
            f"ON {self.quote(schema.name)} ({self.quote(binding.name)})"
        )
        await self.executor.exec(sql)

    async def drop_index(self, table: str, column: str) -> None:
        await self.executor.exec(f"DROP INDEX IF EXISTS {self.quote(self.index_name(table, column))}")
