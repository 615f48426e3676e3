"""Database handles, transactions and record-level operations.

``DB`` runs each statement on a connection leased from its pool. ``Tx``
and ``PinnedConnection`` run everything on one connection. All three share
the ``Executor`` operations.

Example:
    >>> db = await open_db("sqlite3", "app.db")
    >>> await db.automigrate(User)
    >>> await db.insert(User(name="alice"))
    >>> page = await db.list(User, selector="name=alice", order_by=["-id"], limit=10)
    >>> async with db.begin() as tx:
    ...     await tx.update(user)
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from rowkit.binder import Rows, set_value
from rowkit.driver import Driver, NullDriver, Registry, default_registry
from rowkit.errors import ExecutionError, RowkitError, ValidationError
from rowkit.migrations.autogen import automigrate
from rowkit.options import DBOptions, ListResult, QueryOptions
from rowkit.pool import ConnectionPool, PooledConnection
from rowkit.query import (
    gen_delete_sql,
    gen_get_sql,
    gen_insert_sql,
    gen_list_sql,
    gen_update_sql,
    to_selector,
)
from rowkit.schema import table_fields, table_name
from rowkit.selector import Q

if TYPE_CHECKING:
    from rowkit.migrations.operations import Operation

logger = logging.getLogger(__name__)

_SCRIPT_KEYWORDS = ("SET", "CREATE", "INSERT", "DROP")

Selector = Q | str | Mapping[str, Any] | None


def parse_script(blob: bytes | str) -> list[str]:
    """Split a SQL script into statements.

    Only statements starting with SET, CREATE, INSERT or DROP are kept. A
    statement runs until a line ending in ``;``; empty lines and lines
    starting with ``-- `` are skipped.
    """
    text = blob.decode() if isinstance(blob, bytes) else blob
    statements: list[str] = []
    current = ""
    inside = False

    for line in text.splitlines():
        if not line or line.startswith("-- "):
            continue

        if inside:
            current += " " + line.strip()
            if current.endswith(";"):
                statements.append(current)
                inside = False
            continue

        keyword, sep, _ = line.partition(" ")
        if not sep or keyword not in _SCRIPT_KEYWORDS:
            continue
        current = line.rstrip()
        if current.endswith(";"):
            statements.append(current)
        else:
            inside = True

    return statements


def _primary_key_selector(sample: Any) -> Q:
    keys = {}
    for binding in table_fields(sample).primary_keys:
        value = sample
        for attr in binding.path:
            value = getattr(value, attr, None)
        if value is None:
            raise ValidationError(f"{type(sample).__name__}: primary key {binding.name!r} is not set")
        keys[binding.name] = value
    if not keys:
        raise ValidationError(f"{type(sample).__name__} has no primary key; pass a selector")
    return Q(**keys)


class Executor(ABC):
    """Statement execution and record operations over some connection source."""

    def __init__(
        self,
        dialect: str,
        options: DBOptions,
        factory: Callable[..., Driver] | None = None,
    ) -> None:
        self.dialect = dialect
        self.options = options
        self._factory = factory
        self._driver: Driver | None = None

    @property
    def driver(self) -> Driver:
        """Dialect driver bound to this executor."""
        if self._driver is None:
            if self._factory is None:
                self._driver = NullDriver(self)
            else:
                self._driver = self._factory(self, string_size=self.options.string_size)
        return self._driver

    @abstractmethod
    async def _acquire(self) -> tuple[Any, Callable[[], Awaitable[None]]]:
        """Return a raw connection and the coroutine function releasing it."""

    @asynccontextmanager
    async def pinned(self) -> AsyncIterator[Executor]:
        """An executor running every statement on one connection."""
        yield self

    def _statement(self, sql: Any, args: Sequence[Any]) -> tuple[str, tuple[Any, ...]]:
        if isinstance(sql, str):
            return sql, tuple(args)
        if args:
            raise ValidationError("arguments are taken from the statement object")
        text, params = sql.to_sql(self.dialect)
        return text, tuple(params)

    async def _run(self, sql: str, args: tuple[Any, ...]) -> tuple[int, int | None]:
        conn, release = await self._acquire()
        try:
            logger.debug("exec %s [%d args]", sql, len(args))
            try:
                cursor = await conn.execute(sql, args)
            except sqlite3.Error as e:
                raise ExecutionError(str(e), sql, args) from e
            result = cursor.rowcount, cursor.lastrowid
            await cursor.close()
            return result
        finally:
            await release()

    async def exec(self, sql: Any, *args: Any) -> int:
        """Execute a statement and return the number of affected rows.

        ``sql`` is SQL text with positional arguments, or a statement
        built with ``select``/``insert``/``update``/``delete``.
        """
        sql, params = self._statement(sql, args)
        rowcount, _ = await self._run(sql, params)
        return rowcount

    async def _query(
        self,
        sql: str,
        args: Sequence[Any],
        *,
        ignore_not_found: bool | None = None,
    ) -> Rows:
        conn, release = await self._acquire()
        logger.debug("query %s [%d args]", sql, len(args))
        try:
            cursor = await conn.execute(sql, tuple(args))
        except sqlite3.Error as e:
            await release()
            raise ExecutionError(str(e), sql, args) from e
        except BaseException:
            await release()
            raise
        if ignore_not_found is None:
            ignore_not_found = self.options.ignore_not_found
        return Rows(
            cursor,
            release,
            sql=sql,
            max_rows=self.options.max_rows,
            ignore_not_found=ignore_not_found,
        )

    async def query(self, sql: Any, *args: Any) -> Rows:
        """Execute a query; the returned rows hold a connection until consumed.

        Example:
            >>> rows = await db.query("SELECT * FROM users WHERE age > ?", 18)
            >>> users = await rows.rows([], User)
        """
        sql, params = self._statement(sql, args)
        return await self._query(sql, params)

    async def insert(self, sample: Any, *, table: str | None = None) -> int | None:
        """Insert a record and return the new row id.

        An unset auto-increment primary key is filled in on ``sample``.
        """
        sql, args = gen_insert_sql(table_name(sample, table), sample, self.driver)
        _, lastrowid = await self._run(sql, tuple(args))

        for binding in table_fields(sample).primary_keys:
            if binding.auto_increment and lastrowid is not None:
                current = sample
                for attr in binding.path:
                    current = getattr(current, attr, None)
                if not current:
                    set_value(sample, binding, lastrowid)
        return lastrowid

    async def update(self, sample: Any, *, selector: Selector = None, table: str | None = None) -> int:
        """Update the row matching the sample's primary key (and ``selector``)."""
        sql, args = gen_update_sql(table_name(sample, table), sample, self.driver, to_selector(selector))
        return await self.exec(sql, *args)

    async def delete(
        self,
        model: Any,
        *,
        selector: Selector = None,
        delete_all: bool = False,
        table: str | None = None,
    ) -> int:
        """Delete matching rows.

        ``model`` is a record type or instance; an instance without a
        selector deletes the row of its primary key.
        """
        if selector is None and not isinstance(model, type) and not delete_all:
            selector = _primary_key_selector(model)
        sql, args = gen_delete_sql(
            table_name(model, table),
            to_selector(selector),
            dialect=self.dialect,
            columns=table_fields(model).names,
            delete_all=delete_all,
        )
        return await self.exec(sql, *args)

    async def get(
        self,
        model: Any,
        *,
        selector: Selector = None,
        cols: Sequence[str] | None = None,
        table: str | None = None,
        ignore_not_found: bool | None = None,
    ) -> Any:
        """Fetch one record.

        ``model`` is a record type (a new instance is returned) or an
        instance, which is filled in place and matched by primary key when
        no selector is given.

        Raises:
            NotFoundError: No row matched and not-found is not ignored.
        """
        fields = table_fields(model)
        if selector is None and not isinstance(model, type):
            selector = _primary_key_selector(model)
        sql, args = gen_get_sql(
            table_name(model, table),
            cols or fields.names,
            to_selector(selector),
            dialect=self.dialect,
            columns=fields.names,
        )
        rows = await self._query(sql, args, ignore_not_found=ignore_not_found)
        return await rows.row(model)

    async def list(
        self,
        model: type,
        *,
        selector: Selector = None,
        cols: Sequence[str] | None = None,
        order_by: str | Sequence[str] = (),
        offset: int = 0,
        limit: int | None = None,
        with_total: bool = False,
        table: str | None = None,
    ) -> ListResult:
        """Fetch a page of records, optionally with the unpaginated total.

        Example:
            >>> page = await db.list(User, selector=Q(age__gte=18), order_by="-id", limit=20, with_total=True)
            >>> page.total, len(page.items)
        """
        opts = QueryOptions(
            table=table,
            cols=cols,
            selector=selector,
            order_by=order_by,
            offset=offset,
            limit=limit,
            with_total=with_total,
        ).validate()
        fields = table_fields(model)
        sql, count_sql, args = gen_list_sql(
            table_name(model, opts.table),
            opts.cols or fields.names,
            to_selector(opts.selector),
            opts.order_by,
            opts.offset,
            opts.limit,
            dialect=self.dialect,
            columns=fields.names,
        )

        items = await (await self._query(sql, args)).rows([], model)
        total = None
        if opts.with_total:
            total = await (await self._query(count_sql, args)).scalar()
        return ListResult(items=items, total=total)

    async def automigrate(
        self,
        model: Any,
        *,
        table: str | None = None,
        table_options: Sequence[str] = (),
        comment: str | None = None,
    ) -> list[Operation]:
        """Create or migrate the table of ``model``; see ``rowkit.migrations``."""
        async with self.pinned() as executor:
            return await automigrate(
                executor.driver, model, table=table, table_options=table_options, comment=comment
            )


async def _noop() -> None:
    return None


class PinnedConnection(Executor):
    """Executor running every statement on one leased connection."""

    def __init__(self, conn: Any, dialect: str, options: DBOptions, factory: Callable[..., Driver] | None) -> None:
        super().__init__(dialect, options, factory)
        self.conn = conn

    async def _acquire(self) -> tuple[Any, Callable[[], Awaitable[None]]]:
        return self.conn, _noop


class Tx(PinnedConnection):
    """A transaction on one connection.

    ``commit()`` or ``rollback()`` ends it and returns the connection to
    the pool; after that every operation fails.
    """

    def __init__(
        self,
        conn: Any,
        dialect: str,
        options: DBOptions,
        factory: Callable[..., Driver] | None,
        release: Callable[[], Awaitable[None]],
    ) -> None:
        super().__init__(conn, dialect, options, factory)
        self._release = release
        self.done = False

    async def _acquire(self) -> tuple[Any, Callable[[], Awaitable[None]]]:
        if self.done:
            raise RowkitError("transaction has already been committed or rolled back")
        return self.conn, _noop

    async def _finish(self, statement: str) -> None:
        if self.done:
            raise RowkitError("transaction has already been committed or rolled back")
        self.done = True
        try:
            await self.conn.execute(statement)
        except sqlite3.Error as e:
            raise ExecutionError(str(e), statement) from e
        finally:
            await self._release()

    async def commit(self) -> None:
        await self._finish("COMMIT")

    async def rollback(self) -> None:
        await self._finish("ROLLBACK")


class DB(Executor):
    """A database handle backed by a connection pool.

    Example:
        >>> async with await open_db("sqlite3", "app.db") as db:
        ...     user = await db.get(User, selector=Q(id=1))
    """

    def __init__(
        self,
        dialect: str,
        dsn: str,
        pool: ConnectionPool,
        options: DBOptions,
        factory: Callable[..., Driver] | None = None,
    ) -> None:
        super().__init__(dialect, options, factory)
        self.dsn = dsn
        self.pool = pool

    async def __aenter__(self) -> DB:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.pool.close()

    async def _acquire(self) -> tuple[Any, Callable[[], Awaitable[None]]]:
        conn = await self.pool.acquire()

        async def release() -> None:
            await self.pool.release(conn)

        return conn.raw, release

    async def ping(self) -> None:
        await self.exec("SELECT 1")

    @asynccontextmanager
    async def connection(self, timeout: float | None = None) -> AsyncIterator[PinnedConnection]:
        """Lease one connection for a sequence of statements."""
        async with self.pool.connection(timeout) as conn:
            yield PinnedConnection(conn.raw, self.dialect, self.options, self._factory)

    @asynccontextmanager
    async def pinned(self) -> AsyncIterator[Executor]:
        async with self.connection() as conn:
            yield conn

    async def start_transaction(self, timeout: float | None = None) -> Tx:
        """Begin a transaction that the caller commits or rolls back."""
        conn: PooledConnection = await self.pool.acquire(timeout)
        try:
            await conn.raw.execute("BEGIN")
        except BaseException as e:
            await self.pool.release(conn, discard=True)
            if isinstance(e, sqlite3.Error):
                raise ExecutionError(str(e), "BEGIN") from e
            raise

        async def release() -> None:
            await self.pool.release(conn)

        return Tx(conn.raw, self.dialect, self.options, self._factory, release)

    @asynccontextmanager
    async def begin(self, timeout: float | None = None) -> AsyncIterator[Tx]:
        """Begin a transaction that commits on success and rolls back on error.

        Example:
            >>> async with db.begin() as tx:
            ...     await tx.insert(User(name="alice"))
            ...     await tx.insert(User(name="bob"))
        """
        tx = await self.start_transaction(timeout)
        try:
            yield tx
        except BaseException:
            if not tx.done:
                await tx.rollback()
            raise
        if not tx.done:
            await tx.commit()

    async def exec_script(self, blob: bytes | str) -> None:
        """Run a SQL script in one transaction, committed only if every statement succeeds.

        Raises:
            ExecutionError: A statement failed; it is named in the error.
        """
        statements = parse_script(blob)
        async with self.begin() as tx:
            for statement in statements:
                await tx.exec(statement)


def _is_memory(dsn: str) -> bool:
    return dsn == ":memory:" or dsn == "" or "mode=memory" in dsn


async def open_db(
    dialect: str,
    dsn: str,
    options: DBOptions | None = None,
    *,
    registry: Registry | None = None,
) -> DB:
    """Open a database handle.

    Args:
        dialect: Registered dialect name, e.g. ``"sqlite3"``
        dsn: Data source; for SQLite a path, ``:memory:`` or a ``file:`` URI
        options: Handle options (rows cap, pool limits, ping, not-found)
        registry: Dialect registry; ``default_registry()`` when omitted

    Raises:
        UnsupportedError: The dialect is not registered.
        ExecutionError: The initial ping failed.
    """
    options = (options or DBOptions()).validate()
    registry = registry or default_registry()
    factory = registry.get(dialect)

    connect_kwargs: dict[str, Any] = {}
    if dsn.startswith("file:"):
        connect_kwargs["uri"] = True

    max_open, max_idle = options.max_open_conns, options.max_idle_conns
    lifetime, idle_time = options.conn_max_lifetime, options.conn_max_idle_time
    if _is_memory(dsn):
        # Every connection would see its own private database
        max_open, max_idle, lifetime, idle_time = 1, 1, 0, 0

    pool = ConnectionPool(
        lambda: factory.connect(dsn, **connect_kwargs),
        max_open=max_open,
        max_idle=max_idle,
        max_lifetime=lifetime,
        max_idle_time=idle_time,
    )
    db = DB(dialect, dsn, pool, options, factory)

    if not options.without_ping:
        try:
            await db.ping()
        except BaseException:
            await db.close()
            raise

    logger.debug("opened %s database %s", dialect, dsn)
    return db
