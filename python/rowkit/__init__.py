"""Rowkit - typed records over SQL, with automigrate."""

from __future__ import annotations

from rowkit.base import Describable, Record
from rowkit.binder import Rows, RowsIterator
from rowkit.config import DBConfig
from rowkit.db import DB, PinnedConnection, Tx, open_db
from rowkit.driver import ColumnType, Driver, NullDriver, Registry, default_registry
from rowkit.errors import (
    BindError,
    DDLParseError,
    ExecutionError,
    NotFoundError,
    RegistryError,
    RowkitError,
    UnsupportedError,
    ValidationError,
)
from rowkit.fields import JSON, ColumnBinding, Mapped, StorageKind, embedded, mapped_column
from rowkit.options import DBOptions, ListResult
from rowkit.query import delete, insert, select, update
from rowkit.schema import TableSchema, lookup, table_fields, table_name
from rowkit.selector import Q, parse

__version__ = "0.1.0"

__all__ = [
    # Core
    "open_db",
    "DB",
    "Tx",
    "PinnedConnection",
    "DBOptions",
    "DBConfig",
    "Rows",
    "RowsIterator",
    "ListResult",
    # Record definition
    "Record",
    "Describable",
    "Mapped",
    "mapped_column",
    "embedded",
    "JSON",
    "StorageKind",
    "ColumnBinding",
    "TableSchema",
    "table_fields",
    "table_name",
    "lookup",
    # Query building
    "select",
    "insert",
    "update",
    "delete",
    "Q",
    "parse",
    # Dialects
    "Driver",
    "NullDriver",
    "ColumnType",
    "Registry",
    "default_registry",
    # Errors
    "RowkitError",
    "NotFoundError",
    "ValidationError",
    "BindError",
    "UnsupportedError",
    "DDLParseError",
    "ExecutionError",
    "RegistryError",
]
