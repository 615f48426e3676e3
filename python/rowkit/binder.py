"""Value binding between result rows and record fields.

A row is bound in two passes. Plain cells are converted and assigned while
walking the row; JSON documents and integer epoch timestamps are queued as
pending transfers and applied once the whole row has been read, so a nested
target is only allocated after its document decoded successfully.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from rowkit.errors import BindError, ExecutionError, NotFoundError, ValidationError
from rowkit.fields import ColumnBinding, StorageKind
from rowkit.schema import resolve_field_types, table_fields

if TYPE_CHECKING:
    from rowkit.schema import TableFields

logger = logging.getLogger(__name__)


# ========== Encoding ==========


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_value(binding: ColumnBinding, value: Any) -> Any:
    """Convert a field value into a statement parameter."""
    if value is None:
        return None

    kind = binding.kind
    try:
        if kind is StorageKind.BOOL:
            return 1 if value else 0
        if kind is StorageKind.UINT:
            if int(value) < 0:
                raise ValidationError(f"column {binding.name!r}: negative value {value!r} for unsigned column")
            return int(value)
        if kind is StorageKind.TIME and isinstance(value, datetime):
            return value.isoformat()
        if kind is StorageKind.JSON:
            return json.dumps(value, default=_json_default)
        if kind is StorageKind.BYTES:
            return bytes(value)
    except (TypeError, ValueError) as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"column {binding.name!r}: cannot encode {value!r}: {e}") from e
    return value


def get_value(record: Any, path: Sequence[str]) -> Any:
    """Read the value at ``path``; a missing sub-record reads as None."""
    value = record
    for attr in path:
        value = getattr(value, attr, None)
        if value is None:
            return None
    return value


def record_values(sample: Any, fields: TableFields | None = None) -> list[tuple[ColumnBinding, Any]]:
    """Encoded ``(binding, parameter)`` pairs of a record instance, in column order."""
    fields = fields or table_fields(sample)
    return [(b, encode_value(b, get_value(sample, b.path))) for b in fields]


# ========== Decoding ==========


def _parent(record: Any, path: Sequence[str]) -> Any:
    """Walk to the object owning the last attribute, allocating sub-records."""
    obj = record
    for attr in path[:-1]:
        sub = getattr(obj, attr, None)
        if sub is None:
            sub_type = resolve_field_types(type(obj)).get(attr)
            if not isinstance(sub_type, type):
                raise ValidationError(f"cannot allocate {type(obj).__name__}.{attr}")
            sub = sub_type()
            setattr(obj, attr, sub)
        obj = sub
    return obj


def set_value(record: Any, binding: ColumnBinding, value: Any) -> None:
    setattr(_parent(record, binding.path), binding.attr, value)


def decode_cell(binding: ColumnBinding, raw: Any) -> Any:
    """Convert one plain cell into the field's Python value."""
    if raw is None:
        return None

    kind = binding.kind
    try:
        if kind is StorageKind.BOOL:
            return bool(int(raw)) if isinstance(raw, (int, str)) else bool(raw)
        if kind in (StorageKind.INT, StorageKind.UINT):
            return int(raw)
        if kind is StorageKind.FLOAT:
            return float(raw)
        if kind is StorageKind.STRING:
            return raw.decode() if isinstance(raw, bytes) else str(raw)
        if kind is StorageKind.BYTES:
            return raw.encode() if isinstance(raw, str) else bytes(raw)
        if kind is StorageKind.TIME:
            return raw if isinstance(raw, datetime) else datetime.fromisoformat(raw)
    except (TypeError, ValueError) as e:
        raise BindError(binding.name, f"cannot decode {raw!r} as {kind}: {e}") from e
    return raw


@dataclass
class JsonTransfer:
    """A captured JSON document waiting to be decoded into its field."""

    binding: ColumnBinding
    raw: str | bytes | None

    def apply(self, record: Any) -> None:
        if self.raw is None:
            if self.binding.nullable:
                set_value(record, self.binding, None)
            return

        try:
            data = json.loads(self.raw)
        except (TypeError, ValueError) as e:
            raise BindError(self.binding.name, f"invalid JSON: {e}") from e

        target = self.binding.python_type
        try:
            if isinstance(data, dict) and isinstance(target, type):
                from_dict = getattr(target, "from_dict", None)
                if callable(from_dict):
                    data = from_dict(data)
                elif dataclasses.is_dataclass(target):
                    data = target(**data)
        except (TypeError, ValueError) as e:
            raise BindError(self.binding.name, f"cannot build {target.__name__}: {e}") from e

        set_value(record, self.binding, data)


@dataclass
class EpochTransfer:
    """An integer epoch timestamp waiting to be converted into a datetime."""

    binding: ColumnBinding
    raw: int | float

    def apply(self, record: Any) -> None:
        try:
            value = datetime.fromtimestamp(self.raw, tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise BindError(self.binding.name, f"invalid epoch {self.raw!r}: {e}") from e
        set_value(record, self.binding, value)


PendingTransfer = JsonTransfer | EpochTransfer


class Binder:
    """Binds rows of one result shape into records of one type."""

    def __init__(self, fields: TableFields, columns: Sequence[str]) -> None:
        positions = {name.lower(): i for i, name in enumerate(columns)}
        self.fields = fields
        self.plan = [(b, positions[b.name]) for b in fields if b.name in positions]

    def bind(self, record: Any, row: Sequence[Any]) -> Any:
        pending: list[PendingTransfer] = []

        for binding, i in self.plan:
            raw = row[i]
            if binding.kind is StorageKind.JSON:
                pending.append(JsonTransfer(binding, raw))
            elif binding.kind is StorageKind.TIME and isinstance(raw, (int, float)):
                pending.append(EpochTransfer(binding, raw))
            else:
                set_value(record, binding, decode_cell(binding, raw))

        for transfer in pending:
            transfer.apply(record)

        return record


def _is_record_target(target: Any) -> bool:
    cls = target if isinstance(target, type) else type(target)
    return hasattr(cls, "__record_fields__") and hasattr(cls, "__tablename__")


# ========== Result sets ==========


class Rows:
    """An executed query whose rows have not been consumed yet.

    Every fetch method releases the cursor and its connection lease before
    returning, whether it succeeds or raises.
    """

    def __init__(
        self,
        cursor: Any,
        release: Callable[[], Awaitable[None]],
        *,
        sql: str = "",
        max_rows: int = 1000,
        ignore_not_found: bool = False,
    ) -> None:
        self._cursor = cursor
        self._release = release
        self._sql = sql
        self._max_rows = max_rows
        self._ignore_not_found = ignore_not_found
        self._binders: dict[type, Binder] = {}
        self._closed = False

    @property
    def columns(self) -> list[str]:
        return [d[0] for d in self._cursor.description or ()]

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close the cursor and give the connection lease back."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._cursor.close()
        finally:
            await self._release()

    async def _fetchone(self) -> Sequence[Any] | None:
        try:
            return await self._cursor.fetchone()
        except sqlite3.Error as e:
            raise ExecutionError(f"fetch failed: {e}", self._sql) from e

    def _binder_for(self, cls: type) -> Binder:
        binder = self._binders.get(cls)
        if binder is None:
            binder = self._binders[cls] = Binder(table_fields(cls), self.columns)
        return binder

    def _convert(self, raw: Sequence[Any], dst: tuple[Any, ...]) -> Any:
        if not dst:
            return tuple(raw)
        if len(dst) != 1 or not _is_record_target(dst[0]):
            raise ValidationError("scan target can not be set: pass one record, one record type, or nothing")

        target = dst[0]
        if isinstance(target, type):
            target = target()
        return self._binder_for(type(target)).bind(target, raw)

    async def row(self, *dst: Any) -> Any:
        """Fetch the first row.

        Example:
            >>> user = await (await db.query("SELECT * FROM users WHERE id = ?", 1)).row(User)
            >>> await rows.row(existing_user)  # binds in place
            >>> name, age = await rows.row()   # raw tuple

        Raises:
            NotFoundError: The result is empty and not-found is not ignored.
        """
        try:
            raw = await self._fetchone()
            if raw is None:
                if self._ignore_not_found:
                    return None
                raise NotFoundError("object not found")
            return self._convert(raw, dst)
        finally:
            await self.close()

    async def scalar(self) -> Any:
        """Fetch the first cell of the first row."""
        raw = await self.row()
        return None if raw is None else raw[0]

    async def rows(self, dst: list[Any], model: Any = None) -> list[Any]:
        """Append every row (up to ``max_rows``) to ``dst``.

        ``model`` may be a record type (rows are bound into new instances), a
        scalar type (the first cell is converted with it) or None (the first
        cell, or the whole tuple for multi-column results, is appended).
        Empty results are not an error.
        """
        try:
            if not isinstance(dst, list):
                raise ValidationError("rows() needs a list to append into")

            binder = self._binder_for(model) if model is not None and _is_record_target(model) else None
            count = 0
            while count < self._max_rows:
                raw = await self._fetchone()
                if raw is None:
                    break
                if binder is not None:
                    dst.append(binder.bind(model(), raw))
                elif model is not None:
                    dst.append(None if raw[0] is None else model(raw[0]))
                else:
                    dst.append(raw[0] if len(raw) == 1 else tuple(raw))
                count += 1
            else:
                logger.debug("stopped after max_rows=%d: %s", self._max_rows, self._sql)
            return dst
        finally:
            await self.close()

    def iterator(self) -> RowsIterator:
        """Iterate rows one at a time without materializing the result.

        Example:
            >>> async with (await db.query("SELECT * FROM users")).iterator() as it:
            ...     while await it.next():
            ...         user = await it.row(User)
        """
        return RowsIterator(self)


class RowsIterator:
    """Incremental cursor over a result set.

    The iterator holds its connection lease until ``close()`` is awaited;
    use it as an async context manager to release it on every exit path.
    """

    def __init__(self, rows: Rows) -> None:
        self._rows = rows
        self._current: Sequence[Any] | None = None

    async def __aenter__(self) -> RowsIterator:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __aiter__(self) -> AsyncIterator[tuple[Any, ...]]:
        return self

    async def __anext__(self) -> tuple[Any, ...]:
        if not await self.next():
            raise StopAsyncIteration
        return tuple(self._current or ())

    async def next(self) -> bool:
        """Advance to the next row; False once the result is exhausted."""
        if self._rows.closed:
            return False
        self._current = await self._rows._fetchone()
        return self._current is not None

    async def row(self, *dst: Any) -> Any:
        """Bind or return the current row, like ``Rows.row``."""
        if self._current is None:
            raise ValidationError("row() called without a current row; call next() first")
        return self._rows._convert(self._current, dst)

    async def records(self, model: type) -> AsyncIterator[Any]:
        """Yield every remaining row bound into a new ``model`` instance."""
        while await self.next():
            yield await self.row(model)

    async def close(self) -> None:
        self._current = None
        await self._rows.close()
