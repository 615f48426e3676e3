"""Dialect driver interface and the dialect registry."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from rowkit.errors import RegistryError, UnsupportedError
from rowkit.fields import ColumnBinding, StorageKind
from rowkit.selector import placeholder, quote

if TYPE_CHECKING:
    from rowkit.db import Executor
    from rowkit.schema import TableSchema

logger = logging.getLogger(__name__)


@dataclass
class ColumnType:
    """An actual column, as introspected from a live table."""

    name: str
    data_type: str
    size: int | None = None
    nullable: bool = True
    primary_key: bool = False
    default: str | None = None


class Driver(ABC):
    """Per-dialect type mapping, introspection and DDL.

    A driver is bound to one executor (a handle, a transaction or a pinned
    connection) and runs every statement through it.
    """

    name: ClassVar[str] = ""

    def __init__(self, executor: Executor, *, string_size: int = 255) -> None:
        self.executor = executor
        self.string_size = string_size

    @classmethod
    async def connect(cls, dsn: str, **kwargs: Any) -> Any:
        """Open one raw connection for ``dsn``."""
        raise UnsupportedError(f"dialect {cls.name or cls.__name__!r} cannot open connections")

    def placeholder(self, index: int) -> str:
        return placeholder(self.name, index)

    def quote(self, name: str) -> str:
        return quote(name, self.name)

    def index_name(self, table: str, column: str) -> str:
        return f"ix_{table}_{column}"

    def effective_size(self, binding: ColumnBinding) -> int | None:
        """Declared size, or ``string_size`` for keyed strings without one."""
        if binding.size:
            return binding.size
        if binding.kind is StorageKind.STRING and (binding.primary_key or binding.unique or binding.index):
            return self.string_size
        return None

    def insert_excludes(self, binding: ColumnBinding, value: Any) -> bool:
        """Whether ``value`` is left out of an INSERT so the database fills it."""
        return False

    @abstractmethod
    def data_type_of(self, binding: ColumnBinding) -> str:
        """Native type token of a binding's storage kind."""

    def full_data_type_of(self, binding: ColumnBinding) -> str:
        """Native type plus NOT NULL, UNIQUE and DEFAULT constraints."""
        sql = self.data_type_of(binding)
        if binding.not_null:
            sql += " NOT NULL"
        if binding.unique:
            sql += " UNIQUE"
        if binding.server_default is not None:
            sql += f" DEFAULT {binding.server_default}"
        return sql

    # Introspection

    @abstractmethod
    async def has_table(self, table: str) -> bool: ...

    @abstractmethod
    async def has_column(self, table: str, column: str) -> bool: ...

    @abstractmethod
    async def has_index(self, table: str, column: str) -> bool: ...

    @abstractmethod
    async def column_types(self, table: str) -> list[ColumnType]: ...

    @abstractmethod
    async def get_tables(self) -> list[str]: ...

    @abstractmethod
    async def current_database(self) -> str: ...

    # DDL

    @abstractmethod
    async def create_table(self, schema: TableSchema) -> None: ...

    @abstractmethod
    async def drop_table(self, table: str) -> None: ...

    @abstractmethod
    async def add_column(self, schema: TableSchema, column: str) -> None: ...

    @abstractmethod
    async def drop_column(self, table: str, column: str) -> None: ...

    @abstractmethod
    async def alter_column(self, schema: TableSchema, column: str) -> None: ...

    @abstractmethod
    async def create_index(self, schema: TableSchema, column: str) -> None: ...

    @abstractmethod
    async def drop_index(self, table: str, column: str) -> None: ...


class NullDriver(Driver):
    """Driver for handles without a dialect; every schema operation fails."""

    name = "null"

    def _unsupported(self, op: str) -> UnsupportedError:
        return UnsupportedError(f"{op} is not supported without a dialect driver")

    def data_type_of(self, binding: ColumnBinding) -> str:
        raise self._unsupported("data_type_of")

    async def has_table(self, table: str) -> bool:
        raise self._unsupported("has_table")

    async def has_column(self, table: str, column: str) -> bool:
        raise self._unsupported("has_column")

    async def has_index(self, table: str, column: str) -> bool:
        raise self._unsupported("has_index")

    async def column_types(self, table: str) -> list[ColumnType]:
        raise self._unsupported("column_types")

    async def get_tables(self) -> list[str]:
        raise self._unsupported("get_tables")

    async def current_database(self) -> str:
        raise self._unsupported("current_database")

    async def create_table(self, schema: TableSchema) -> None:
        raise self._unsupported("create_table")

    async def drop_table(self, table: str) -> None:
        raise self._unsupported("drop_table")

    async def add_column(self, schema: TableSchema, column: str) -> None:
        raise self._unsupported("add_column")

    async def drop_column(self, table: str, column: str) -> None:
        raise self._unsupported("drop_column")

    async def alter_column(self, schema: TableSchema, column: str) -> None:
        raise self._unsupported("alter_column")

    async def create_index(self, schema: TableSchema, column: str) -> None:
        raise self._unsupported("create_index")

    async def drop_index(self, table: str, column: str) -> None:
        raise self._unsupported("drop_index")


# Driver classes are their own factories: called with an executor, and
# exposing the `connect` classmethod that opens raw connections.
DriverFactory = type[Driver]


class Registry:
    """Dialect name to driver factory.

    Registering a name twice is a configuration error and fails immediately.

    Example:
        >>> registry = Registry()
        >>> registry.register("sqlite3", SqliteDriver)
        >>> registry.get("sqlite3")
        <class 'rowkit.dialects.sqlite.SqliteDriver'>
    """

    def __init__(self) -> None:
        self._factories: dict[str, DriverFactory] = {}
        self._lock = threading.Lock()

    def register(self, name: str, factory: DriverFactory) -> None:
        with self._lock:
            if name in self._factories:
                raise RegistryError(f"dialect {name!r} is already registered")
            self._factories[name] = factory
        logger.info("registered dialect %s", name)

    def get(self, name: str) -> DriverFactory:
        try:
            return self._factories[name]
        except KeyError:
            raise UnsupportedError(f"unknown dialect {name!r}") from None

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def default_registry() -> Registry:
    """Build a registry holding the built-in dialects."""
    from rowkit.dialects.sqlite import SqliteDriver

    registry = Registry()
    registry.register("sqlite3", SqliteDriver)
    return registry
