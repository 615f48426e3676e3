"""Column and field definitions for record types."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class StorageKind(enum.StrEnum):
    """Abstract storage kind of a column, independent of any dialect."""

    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    STRING = "string"
    TIME = "time"
    BYTES = "bytes"
    JSON = "json"


class JSON:
    """Marker class for JSON-encoded columns.

    When used with mapped_column, indicates the column should store the
    field as a JSON document. Every dialect stores it as text.

    Example:
        >>> class Product(Record):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     attrs: Mapped[dict] = mapped_column(JSON)
        ...     tags: Mapped[list] = mapped_column(JSON)
    """

    pass


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped field.

    Example:
        >>> class User(Record):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str] = mapped_column(max_length=100)
        ...     age: Mapped[int | None]
    """

    pass


@dataclass
class FieldSpec:
    """Declared options of one record field, before type resolution."""

    attr: str | None = None
    name: str | None = None
    json_name: str | None = None
    kind: StorageKind | None = None
    primary_key: bool = False
    nullable: bool | None = None
    unique: bool = False
    index: bool = False
    index_class: str | None = None
    default: Any = None
    server_default: str | None = None
    max_length: int | None = None
    autoincrement: bool | None = None
    unsigned: bool = False
    is_json: bool = False
    embedded: bool = False
    skip: bool = False


@dataclass(frozen=True)
class ColumnBinding:
    """Immutable mapping from one record field to one SQL column.

    ``path`` is the chain of attribute names leading from the record to the
    field; it has more than one element for columns flattened out of an
    embedded sub-record.
    """

    name: str
    path: tuple[str, ...]
    kind: StorageKind
    python_type: Any = None
    nullable: bool = True
    size: int | None = None
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    index: bool = False
    index_class: str | None = None
    server_default: str | None = None
    json_name: str | None = None

    @property
    def attr(self) -> str:
        """Name of the attribute on the innermost record."""
        return self.path[-1]

    @property
    def not_null(self) -> bool:
        return not self.nullable


def mapped_column(
    type_or_marker: type | None = None,
    /,
    *,
    name: str | None = None,
    json_name: str | None = None,
    kind: StorageKind | None = None,
    primary_key: bool = False,
    nullable: bool | None = None,
    unique: bool = False,
    index: bool = False,
    index_class: str | None = None,
    default: Any = None,
    server_default: str | None = None,
    max_length: int | None = None,
    autoincrement: bool | None = None,
    unsigned: bool = False,
    skip: bool = False,
) -> Any:
    """Define a database column.

    Args:
        type_or_marker: Optional JSON marker for this column
        name: Column name (defaults to the lowercased attribute name)
        json_name: Key used when this field is encoded inside a JSON column
        kind: Explicit storage kind, overriding the annotation
        primary_key: Whether this is a primary key column
        nullable: Whether NULL values are allowed (default: from the annotation)
        unique: Whether values must be unique
        index: Whether to create an index on this column
        index_class: Index class, e.g. "UNIQUE"
        default: Default value for new instances (can be callable)
        server_default: SQL expression used as the column DEFAULT
        max_length: Column size
        autoincrement: Whether to auto-increment (for integer PKs)
        unsigned: Store an int as an unsigned integer
        skip: Exclude the field from the table

    Returns:
        A FieldSpec descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> name: Mapped[str] = mapped_column(max_length=100, index=True)
        >>> email: Mapped[str] = mapped_column(index=True, index_class="UNIQUE")
        >>> attrs: Mapped[dict] = mapped_column(JSON)
    """
    is_json = type_or_marker is JSON or (
        isinstance(type_or_marker, type) and issubclass(type_or_marker, JSON)
    )

    # Primary keys are not nullable
    if primary_key:
        nullable = False
        if autoincrement is None:
            autoincrement = True

    return FieldSpec(
        name=name,
        json_name=json_name,
        kind=kind,
        primary_key=primary_key,
        nullable=nullable,
        unique=unique,
        index=index,
        index_class=index_class,
        default=default,
        server_default=server_default,
        max_length=max_length,
        autoincrement=autoincrement,
        unsigned=unsigned,
        is_json=is_json,
        skip=skip,
    )


def embedded(name: str | None = None) -> Any:
    """Flatten a sub-record's fields into the parent table.

    Giving the sub-record a column ``name`` stores it as one JSON column
    instead.

    Example:
        >>> class User(Record):
        ...     home: Mapped[Address] = embedded()
        ...     work: Mapped[Address] = embedded(name="work_address")
    """
    return FieldSpec(name=name, embedded=True)
