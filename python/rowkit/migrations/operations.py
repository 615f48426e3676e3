"""Migration operations produced by the automigrate planner."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rowkit.driver import ColumnType, Driver
    from rowkit.schema import TableSchema

logger = logging.getLogger(__name__)


@runtime_checkable
class Operation(Protocol):
    """Protocol for migration operations."""

    @property
    def operation_type(self) -> str: ...

    def describe(self) -> str:
        """One-line human readable summary."""
        ...

    async def apply(self, driver: Driver) -> None:
        """Run the operation through ``driver``."""
        ...


@dataclass
class CreateTable:
    """Create a missing table, including its indexes."""

    schema: TableSchema

    @property
    def operation_type(self) -> str:
        return "create_table"

    @property
    def table_name(self) -> str:
        return self.schema.name

    def describe(self) -> str:
        return f"create table {self.schema.name} ({len(self.schema.fields)} columns)"

    async def apply(self, driver: Driver) -> None:
        await driver.create_table(self.schema)


@dataclass
class AddColumn:
    """Add a column declared by the record but missing from the table."""

    schema: TableSchema
    column_name: str

    @property
    def operation_type(self) -> str:
        return "add_column"

    @property
    def table_name(self) -> str:
        return self.schema.name

    def describe(self) -> str:
        return f"add column {self.schema.name}.{self.column_name}"

    async def apply(self, driver: Driver) -> None:
        await driver.add_column(self.schema, self.column_name)


@dataclass
class AlterColumn:
    """Bring an existing column's size and nullability in line with the record."""

    schema: TableSchema
    column_name: str
    existing: ColumnType | None = None
    size: int | None = None
    nullable: bool | None = None

    @property
    def operation_type(self) -> str:
        return "alter_column"

    @property
    def table_name(self) -> str:
        return self.schema.name

    def describe(self) -> str:
        changes = []
        if self.existing is not None and self.size != self.existing.size:
            changes.append(f"size {self.existing.size} -> {self.size}")
        if self.existing is not None and self.nullable != self.existing.nullable:
            changes.append("NULL -> NOT NULL" if not self.nullable else "NOT NULL -> NULL")
        detail = f" ({', '.join(changes)})" if changes else ""
        return f"alter column {self.schema.name}.{self.column_name}{detail}"

    async def apply(self, driver: Driver) -> None:
        await driver.alter_column(self.schema, self.column_name)


@dataclass
class CreateIndex:
    """Create the index of an indexed column."""

    schema: TableSchema
    column_name: str
    index_name: str
    index_class: str | None = None

    @property
    def operation_type(self) -> str:
        return "create_index"

    @property
    def table_name(self) -> str:
        return self.schema.name

    def describe(self) -> str:
        kind = f"{self.index_class.lower()} index" if self.index_class else "index"
        return f"create {kind} {self.index_name} on {self.schema.name}({self.column_name})"

    async def apply(self, driver: Driver) -> None:
        await driver.create_index(self.schema, self.column_name)


@dataclass
class DropColumn:
    """Drop a column. Never planned automatically; built by callers."""

    table: str
    column_name: str

    @property
    def operation_type(self) -> str:
        return "drop_column"

    @property
    def table_name(self) -> str:
        return self.table

    def describe(self) -> str:
        return f"drop column {self.table}.{self.column_name}"

    async def apply(self, driver: Driver) -> None:
        await driver.drop_column(self.table, self.column_name)
