"""Automigrate: reconcile a live table with a record type.

The planner compares the desired schema derived from a record type with the
actual columns introspected through a driver and returns the operations that
bring the table in line. Nothing is persisted between calls; every run
recomputes the plan from scratch, so re-running after a partial failure
picks up where the previous run stopped.

Columns present in the table but not in the record are never dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from rowkit.fields import StorageKind
from rowkit.migrations.operations import AddColumn, AlterColumn, CreateIndex, CreateTable, Operation
from rowkit.schema import table_schema

if TYPE_CHECKING:
    from rowkit.driver import ColumnType, Driver
    from rowkit.fields import ColumnBinding
    from rowkit.schema import TableSchema

logger = logging.getLogger(__name__)


def _needs_alter(driver: Driver, binding: ColumnBinding, actual: ColumnType) -> bool:
    size = driver.effective_size(binding)
    if size != actual.size and (binding.kind is StorageKind.STRING or actual.size is not None):
        return True
    return binding.nullable != actual.nullable


async def plan(driver: Driver, schema: TableSchema) -> list[Operation]:
    """Compute the operations that migrate the live table to ``schema``.

    Returns:
        ``[CreateTable]`` for a missing table; otherwise AddColumn and
        AlterColumn operations in column order, followed by CreateIndex for
        every indexed column whose index is missing.
    """
    if not await driver.has_table(schema.name):
        return [CreateTable(schema)]

    actual = {c.name: c for c in await driver.column_types(schema.name)}
    operations: list[Operation] = []

    for binding in schema.fields:
        found = actual.get(binding.name)
        if found is None:
            operations.append(AddColumn(schema, binding.name))
        elif _needs_alter(driver, binding, found):
            operations.append(
                AlterColumn(
                    schema,
                    binding.name,
                    existing=found,
                    size=driver.effective_size(binding),
                    nullable=binding.nullable,
                )
            )

    for binding in schema.fields:
        if binding.index and not await driver.has_index(schema.name, binding.name):
            operations.append(
                CreateIndex(
                    schema,
                    binding.name,
                    index_name=driver.index_name(schema.name, binding.name),
                    index_class=binding.index_class,
                )
            )

    return operations


async def automigrate(
    driver: Driver,
    record_type: Any,
    *,
    table: str | None = None,
    table_options: Sequence[str] = (),
    comment: str | None = None,
) -> list[Operation]:
    """Plan and apply the migration of one record type's table.

    The first failing operation aborts the run and propagates; the
    operations applied before it stay applied.

    Example:
        >>> ops = await automigrate(db.driver, User)
        >>> [op.describe() for op in ops]
        ['create table users (4 columns)']

    Returns:
        The operations that were applied, in order.
    """
    schema = table_schema(record_type, table, tuple(table_options), comment)
    operations = await plan(driver, schema)

    for op in operations:
        logger.debug("applying %s", op.describe())
        await op.apply(driver)

    if operations:
        logger.info("migrated %s: %d operation(s)", schema.name, len(operations))
    return operations
