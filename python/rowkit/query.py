"""SQL generation for list, get, insert, update and delete statements.

The ``gen_*`` functions are pure: they take a table, columns and a selector
and return SQL text with its positional arguments. The statement builders
at the bottom (``select``, ``insert``, ``update``, ``delete``) are a fluent
front end over the same functions.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from rowkit.binder import encode_value, record_values
from rowkit.errors import ValidationError
from rowkit.schema import table_fields, table_name
from rowkit.selector import Q, parse, placeholder, quote

if TYPE_CHECKING:
    from rowkit.driver import Driver

T = TypeVar("T")

__all__ = [
    "gen_count_sql",
    "gen_delete_sql",
    "gen_get_sql",
    "gen_insert_sql",
    "gen_list_sql",
    "gen_update_sql",
    "order_clause",
    "quote",
    "to_selector",
    "select",
    "insert",
    "update",
    "delete",
]


def to_selector(selector: Q | str | Mapping[str, Any] | None) -> Q | None:
    """Normalize the accepted selector forms into a Q object."""
    if selector is None or isinstance(selector, Q):
        return selector
    if isinstance(selector, str):
        return parse(selector)
    if isinstance(selector, Mapping):
        return Q(**selector)
    raise ValidationError(f"unsupported selector type {type(selector).__name__}")


def _where(
    selector: Q | str | Mapping[str, Any] | None,
    dialect: str,
    columns: Iterable[str] | None,
    param_offset: int = 0,
) -> tuple[str, list[Any]]:
    q = to_selector(selector)
    if q is None:
        return "", []
    return q.to_sql(dialect, columns, param_offset)


def _check_columns(names: Iterable[str], columns: Iterable[str] | None) -> None:
    if columns is None:
        return
    known = {c.lower() for c in columns}
    for name in names:
        if name.lower() not in known:
            raise ValidationError(f"unknown column {name!r}")


def order_clause(
    order_by: str | Sequence[str] | None,
    dialect: str = "sqlite3",
    columns: Iterable[str] | None = None,
) -> str:
    """Render ``"col"``, ``"col desc"`` and ``"-col"`` items as an ORDER BY list.

    Example:
        >>> order_clause(["-created", "name asc"])
        '`created` DESC, `name` ASC'
    """
    if not order_by:
        return ""
    if isinstance(order_by, str):
        order_by = [order_by]

    parts = []
    names = []
    for item in order_by:
        item = item.strip()
        if item.startswith("-"):
            name, direction = item[1:].strip(), "DESC"
        else:
            words = item.split()
            if len(words) == 1:
                name, direction = words[0], "ASC"
            elif len(words) == 2 and words[1].lower() in ("asc", "desc"):
                name, direction = words[0], words[1].upper()
            else:
                raise ValidationError(f"invalid order item {item!r}")
        if not name:
            raise ValidationError(f"invalid order item {item!r}")
        names.append(name)
        parts.append(f"{quote(name, dialect)} {direction}")

    _check_columns(names, columns)
    return ", ".join(parts)


def _select_list(cols: Sequence[str] | None, dialect: str, columns: Iterable[str] | None) -> str:
    if not cols:
        return "*"
    _check_columns(cols, columns)
    return ", ".join(quote(c, dialect) for c in cols)


def gen_list_sql(
    table: str,
    cols: Sequence[str] | None = None,
    selector: Q | str | Mapping[str, Any] | None = None,
    order_by: str | Sequence[str] | None = None,
    offset: int = 0,
    limit: int | None = None,
    *,
    dialect: str = "sqlite3",
    columns: Iterable[str] | None = None,
) -> tuple[str, str, list[Any]]:
    """Build a paginated SELECT and its paired COUNT.

    Both statements share the same WHERE clause and argument list. No
    ordering is added unless asked for.

    Returns:
        (query, count_query, args)
    """
    columns = list(columns) if columns is not None else None
    where, args = _where(selector, dialect, columns)
    source = f" FROM {quote(table, dialect)}"
    if where:
        source += f" WHERE {where}"

    sql = f"SELECT {_select_list(cols, dialect, columns)}{source}"
    order = order_clause(order_by, dialect, columns)
    if order:
        sql += f" ORDER BY {order}"

    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    elif offset and dialect in ("sqlite3", "sqlite", "mysql"):
        # LIMIT is mandatory before OFFSET here
        sql += " LIMIT -1" if dialect != "mysql" else " LIMIT 18446744073709551615"
    if offset:
        sql += f" OFFSET {int(offset)}"

    return sql, f"SELECT COUNT(*){source}", args


def gen_count_sql(
    table: str,
    selector: Q | str | Mapping[str, Any] | None = None,
    *,
    dialect: str = "sqlite3",
    columns: Iterable[str] | None = None,
) -> tuple[str, list[Any]]:
    _, count_sql, args = gen_list_sql(table, None, selector, dialect=dialect, columns=columns)
    return count_sql, args


def gen_get_sql(
    table: str,
    cols: Sequence[str] | None = None,
    selector: Q | str | Mapping[str, Any] | None = None,
    *,
    dialect: str = "sqlite3",
    columns: Iterable[str] | None = None,
) -> tuple[str, list[Any]]:
    """Build a SELECT of at most one row."""
    sql, _, args = gen_list_sql(table, cols, selector, limit=1, dialect=dialect, columns=columns)
    return sql, args


def gen_insert_sql(table: str, sample: Any, driver: Driver) -> tuple[str, list[Any]]:
    """Build an INSERT of every set field of ``sample``.

    Fields that are None, and fields the driver excludes (an unset
    auto-increment primary key), are left to the database.
    """
    dialect = driver.name
    cols: list[str] = []
    args: list[Any] = []
    for binding, value in record_values(sample):
        if value is None or driver.insert_excludes(binding, value):
            continue
        cols.append(quote(binding.name, dialect))
        args.append(value)

    if not cols:
        return f"INSERT INTO {quote(table, dialect)} DEFAULT VALUES", []

    marks = ", ".join(placeholder(dialect, i) for i in range(len(args)))
    return f"INSERT INTO {quote(table, dialect)} ({', '.join(cols)}) VALUES ({marks})", args


def gen_update_sql(
    table: str,
    sample: Any,
    driver: Driver,
    selector: Q | str | Mapping[str, Any] | None = None,
) -> tuple[str, list[Any]]:
    """Build an UPDATE setting every set non-key field of ``sample``.

    The row is matched by the sample's primary key values, ANDed with
    ``selector`` when given.

    Raises:
        ValidationError: Nothing to set, or no WHERE clause could be built.
    """
    dialect = driver.name
    fields = table_fields(sample)

    sets: list[str] = []
    keys: list[tuple[str, Any]] = []
    args: list[Any] = []
    for binding, value in record_values(sample, fields):
        if binding.primary_key:
            if value is not None:
                keys.append((binding.name, value))
            continue
        if value is None:
            continue
        sets.append(f"{quote(binding.name, dialect)} = {placeholder(dialect, len(args))}")
        args.append(value)

    if not sets:
        raise ValidationError(f"update of {table!r}: no fields to set")

    where_parts = []
    for name, value in keys:
        where_parts.append(f"{quote(name, dialect)} = {placeholder(dialect, len(args))}")
        args.append(value)

    where, where_args = _where(selector, dialect, fields.names, len(args))
    if where:
        where_parts.append(where)
        args.extend(where_args)

    if not where_parts:
        raise ValidationError(f"update of {table!r}: no primary key value or selector")

    sql = f"UPDATE {quote(table, dialect)} SET {', '.join(sets)} WHERE {' AND '.join(where_parts)}"
    return sql, args


def gen_delete_sql(
    table: str,
    selector: Q | str | Mapping[str, Any] | None = None,
    *,
    dialect: str = "sqlite3",
    columns: Iterable[str] | None = None,
    delete_all: bool = False,
) -> tuple[str, list[Any]]:
    """Build a DELETE.

    A selector that renders no clause is refused unless ``delete_all`` is
    set; an unfiltered DELETE is never produced by accident.
    """
    where, args = _where(selector, dialect, columns)
    sql = f"DELETE FROM {quote(table, dialect)}"
    if where:
        return f"{sql} WHERE {where}", args
    if not delete_all:
        raise ValidationError(f"refusing to delete from {table!r} without a selector; pass delete_all=True")
    return sql, []


# ========== Statement builders ==========


def _columns_of(model: type) -> list[str]:
    return table_fields(model).names


def _and(current: Q | None, conditions: Sequence[Q]) -> Q | None:
    for condition in conditions:
        current = condition if current is None else current & condition
    return current


@dataclass
class SelectStatement(Generic[T]):
    """Represents a SELECT query."""

    model: type[T]
    _selector: Q | None = None
    _cols: list[str] = field(default_factory=list)
    _order_by: list[str] = field(default_factory=list)
    _limit: int | None = None
    _offset: int = 0
    _table: str | None = None

    def where(self, *conditions: Q | str) -> SelectStatement[T]:
        """Add WHERE conditions.

        Example:
            >>> select(User).where(Q(name="Alice"))
            >>> select(User).where("age>18", Q(active=True))
        """
        return replace(self, _selector=_and(self._selector, [to_selector(c) for c in conditions]))

    def filter_by(self, **kwargs: Any) -> SelectStatement[T]:
        """Add WHERE conditions using keyword arguments.

        Example:
            >>> select(User).filter_by(name="Alice", active=True)
        """
        return self.where(Q(**kwargs))

    def columns(self, *cols: str) -> SelectStatement[T]:
        return replace(self, _cols=self._cols + list(cols))

    def order_by(self, *items: str) -> SelectStatement[T]:
        """Add ORDER BY items.

        Example:
            >>> select(User).order_by("-created_at", "name")
        """
        return replace(self, _order_by=self._order_by + list(items))

    def limit(self, n: int) -> SelectStatement[T]:
        """Limit the number of results."""
        return replace(self, _limit=n)

    def offset(self, n: int) -> SelectStatement[T]:
        """Skip the first n results."""
        return replace(self, _offset=n)

    def table(self, name: str) -> SelectStatement[T]:
        return replace(self, _table=name)

    def to_sql(self, dialect: str = "sqlite3") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        sql, _, args = gen_list_sql(
            table_name(self.model, self._table),
            self._cols or _columns_of(self.model),
            self._selector,
            self._order_by,
            self._offset,
            self._limit,
            dialect=dialect,
            columns=_columns_of(self.model),
        )
        return sql, args


@dataclass
class InsertStatement(Generic[T]):
    """Represents an INSERT of one or more rows given as column mappings."""

    model: type[T]
    _values: list[dict[str, Any]] = field(default_factory=list)
    _table: str | None = None

    def values(self, *rows: Mapping[str, Any], **single_row: Any) -> InsertStatement[T]:
        """Specify values to insert.

        Example:
            >>> insert(User).values(name="Alice", email="alice@example.com")
            >>> insert(User).values({"name": "Alice"}, {"name": "Bob"})
        """
        new_values = list(self._values) + [dict(r) for r in rows]
        if single_row:
            new_values.append(single_row)
        return replace(self, _values=new_values)

    def table(self, name: str) -> InsertStatement[T]:
        return replace(self, _table=name)

    def to_sql(self, dialect: str = "sqlite3") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self._values:
            raise ValidationError("No values specified for INSERT")

        fields = table_fields(self.model)
        names = list(self._values[0].keys())
        bindings = []
        for name in names:
            binding = fields.get(name)
            if binding is None:
                raise ValidationError(f"unknown column {name!r}")
            bindings.append(binding)

        params: list[Any] = []
        groups = []
        for row in self._values:
            marks = []
            for binding, name in zip(bindings, names, strict=True):
                marks.append(placeholder(dialect, len(params)))
                params.append(encode_value(binding, row.get(name)))
            groups.append(f"({', '.join(marks)})")

        cols = ", ".join(quote(b.name, dialect) for b in bindings)
        table = quote(table_name(self.model, self._table), dialect)
        return f"INSERT INTO {table} ({cols}) VALUES {', '.join(groups)}", params


@dataclass
class UpdateStatement(Generic[T]):
    """Represents an UPDATE query."""

    model: type[T]
    _set_values: dict[str, Any] = field(default_factory=dict)
    _selector: Q | None = None
    _table: str | None = None

    def values(self, **kwargs: Any) -> UpdateStatement[T]:
        """Specify values to update.

        Example:
            >>> update(User).values(name="Bob").where(Q(id=1))
        """
        return replace(self, _set_values={**self._set_values, **kwargs})

    def where(self, *conditions: Q | str) -> UpdateStatement[T]:
        """Add WHERE conditions."""
        return replace(self, _selector=_and(self._selector, [to_selector(c) for c in conditions]))

    def table(self, name: str) -> UpdateStatement[T]:
        return replace(self, _table=name)

    def to_sql(self, dialect: str = "sqlite3") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        if not self._set_values:
            raise ValidationError("No values specified for UPDATE")

        fields = table_fields(self.model)
        params: list[Any] = []
        set_parts = []
        for name, value in self._set_values.items():
            binding = fields.get(name)
            if binding is None:
                raise ValidationError(f"unknown column {name!r}")
            set_parts.append(f"{quote(binding.name, dialect)} = {placeholder(dialect, len(params))}")
            params.append(encode_value(binding, value))

        where, where_args = _where(self._selector, dialect, fields.names, len(params))
        if not where:
            raise ValidationError("UPDATE without a WHERE clause")

        table = quote(table_name(self.model, self._table), dialect)
        return f"UPDATE {table} SET {', '.join(set_parts)} WHERE {where}", params + where_args


@dataclass
class DeleteStatement(Generic[T]):
    """Represents a DELETE query."""

    model: type[T]
    _selector: Q | None = None
    _all: bool = False
    _table: str | None = None

    def where(self, *conditions: Q | str) -> DeleteStatement[T]:
        """Add WHERE conditions."""
        return replace(self, _selector=_and(self._selector, [to_selector(c) for c in conditions]))

    def all(self) -> DeleteStatement[T]:
        """Explicitly delete every row."""
        return replace(self, _all=True)

    def table(self, name: str) -> DeleteStatement[T]:
        return replace(self, _table=name)

    def to_sql(self, dialect: str = "sqlite3") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        return gen_delete_sql(
            table_name(self.model, self._table),
            self._selector,
            dialect=dialect,
            columns=_columns_of(self.model),
            delete_all=self._all,
        )


def select(model: type[T]) -> SelectStatement[T]:
    """Create a SELECT statement for a record type.

    Example:
        >>> stmt = select(User).where(Q(name="Alice"))
        >>> users = await (await db.query(stmt)).rows([], User)
    """
    return SelectStatement(model=model)


def insert(model: type[T]) -> InsertStatement[T]:
    """Create an INSERT statement for a record type.

    Example:
        >>> stmt = insert(User).values(name="Alice", email="alice@example.com")
        >>> await db.exec(stmt)
    """
    return InsertStatement(model=model)


def update(model: type[T]) -> UpdateStatement[T]:
    """Create an UPDATE statement for a record type.

    Example:
        >>> stmt = update(User).values(name="Bob").where(Q(id=1))
        >>> await db.exec(stmt)
    """
    return UpdateStatement(model=model)


def delete(model: type[T]) -> DeleteStatement[T]:
    """Create a DELETE statement for a record type.

    Example:
        >>> stmt = delete(User).where(Q(id=1))
        >>> await db.exec(stmt)
    """
    return DeleteStatement(model=model)
