"""Schema migration: automigrate planning and the table-recreate DDL engine.

Example:
    >>> from rowkit.migrations import automigrate
    >>> ops = await automigrate(db.driver, User)
"""

from rowkit.migrations.autogen import automigrate, plan
from rowkit.migrations.ddl import DDLDocument, raw_ddl, recreate_table
from rowkit.migrations.operations import (
    AddColumn,
    AlterColumn,
    CreateIndex,
    CreateTable,
    DropColumn,
    Operation,
)

__all__ = [
    "AddColumn",
    "AlterColumn",
    "CreateIndex",
    "CreateTable",
    "DDLDocument",
    "DropColumn",
    "Operation",
    "automigrate",
    "plan",
    "raw_ddl",
    "recreate_table",
]
