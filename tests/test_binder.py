"""Tests for row binding and result sets, without a database."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from rowkit import JSON, BindError, Mapped, NotFoundError, Record, ValidationError, embedded, mapped_column
from rowkit.binder import Binder, Rows, encode_value, get_value, record_values
from rowkit.schema import table_fields


class Address(Record):
    city: Mapped[str]
    zip: Mapped[str | None]


class Profile(Record):
    bio: Mapped[str | None]
    age: Mapped[int | None]


class Event(Record):
    """Record covering every storage kind."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True)
    active: Mapped[bool]
    hits: Mapped[int] = mapped_column(unsigned=True)
    at: Mapped[datetime | None]
    home: Mapped[Address] = embedded()
    profile: Mapped[Profile | None]
    tags: Mapped[list] = mapped_column(JSON)
    payload: Mapped[bytes | None]


COLUMNS = ["id", "active", "hits", "at", "city", "zip", "profile", "tags", "payload"]


def _binder(columns: list[str] = COLUMNS) -> Binder:
    return Binder(table_fields(Event), columns)


class FakeCursor:
    """Minimal async cursor over a list of rows."""

    def __init__(self, columns: list[str], rows: list[tuple]) -> None:
        self.description = [(c, None, None, None, None, None, None) for c in columns]
        self._rows = list(rows)
        self.closed = False

    async def fetchone(self) -> tuple | None:
        return self._rows.pop(0) if self._rows else None

    async def close(self) -> None:
        self.closed = True


class Lease:
    """Counts connection releases."""

    def __init__(self) -> None:
        self.released = 0

    async def __call__(self) -> None:
        self.released += 1


def _rows(rows: list[tuple], columns: list[str] = COLUMNS, **kwargs) -> tuple[Rows, FakeCursor, Lease]:
    cursor = FakeCursor(columns, rows)
    lease = Lease()
    return Rows(cursor, lease, sql="SELECT", **kwargs), cursor, lease


class TestBinder:
    """Test binding rows into records."""

    def test_bind_full_row(self) -> None:
        row = (1, 1, 5, "2024-01-02T03:04:05+00:00", "Oslo", None, '{"bio": "x", "age": 3}', '["a"]', b"\x00")
        event = _binder().bind(Event(), row)

        assert event.id == 1
        assert event.active is True
        assert event.hits == 5
        assert event.at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert event.home == Address(city="Oslo", zip=None)
        assert event.profile == Profile(bio="x", age=3)
        assert event.tags == ["a"]
        assert event.payload == b"\x00"

    def test_embedded_target_is_allocated(self) -> None:
        event = Event()
        assert event.home is None
        _binder(["city"]).bind(event, ("Rome",))
        assert isinstance(event.home, Address)
        assert event.home.city == "Rome"

    def test_columns_match_case_insensitively(self) -> None:
        binder = _binder(["ID", "City"])
        assert [b.name for b, _ in binder.plan] == ["id", "city"]

    def test_unknown_result_columns_are_ignored(self) -> None:
        event = _binder(["id", "extra"]).bind(Event(), (4, "ignored"))
        assert event.id == 4

    def test_epoch_integer_becomes_utc_datetime(self) -> None:
        event = _binder(["at"]).bind(Event(), (86400,))
        assert event.at == datetime(1970, 1, 2, tzinfo=UTC)

    def test_null_json_clears_nullable_field(self) -> None:
        event = Event(profile=Profile(bio="old"))
        _binder(["profile"]).bind(event, (None,))
        assert event.profile is None

    def test_null_json_leaves_non_nullable_field(self) -> None:
        event = Event(tags=["keep"])
        _binder(["tags"]).bind(event, (None,))
        assert event.tags == ["keep"]

    def test_invalid_json_raises_bind_error(self) -> None:
        with pytest.raises(BindError) as exc_info:
            _binder(["tags"]).bind(Event(), ("{not json",))
        assert exc_info.value.column == "tags"

    def test_undecodable_cell_raises_bind_error(self) -> None:
        with pytest.raises(BindError, match="hits"):
            _binder(["hits"]).bind(Event(), ("many",))

    def test_bool_from_text(self) -> None:
        event = _binder(["active"]).bind(Event(), ("0",))
        assert event.active is False


class TestEncoding:
    """Test field values to statement parameters."""

    def test_bool_is_stored_as_integer(self) -> None:
        binding = table_fields(Event).get("active")
        assert encode_value(binding, True) == 1
        assert encode_value(binding, False) == 0

    def test_negative_unsigned_rejected(self) -> None:
        binding = table_fields(Event).get("hits")
        with pytest.raises(ValidationError, match="unsigned"):
            encode_value(binding, -1)

    def test_time_is_iso_text(self) -> None:
        binding = table_fields(Event).get("at")
        value = datetime(2024, 5, 1, 12, 30, tzinfo=UTC)
        assert encode_value(binding, value) == "2024-05-01T12:30:00+00:00"

    def test_json_record_uses_to_dict(self) -> None:
        binding = table_fields(Event).get("profile")
        assert encode_value(binding, Profile(bio="x", age=3)) == '{"bio": "x", "age": 3}'

    def test_unserializable_json_rejected(self) -> None:
        binding = table_fields(Event).get("tags")
        with pytest.raises(ValidationError):
            encode_value(binding, [object()])

    def test_none_passes_through(self) -> None:
        assert encode_value(table_fields(Event).get("profile"), None) is None

    def test_get_value_through_missing_sub_record(self) -> None:
        assert get_value(Event(), ("home", "city")) is None

    def test_record_values_in_column_order(self) -> None:
        event = Event(id=1, active=True, home=Address(city="Oslo"), tags=[])
        values = [(b.name, v) for b, v in record_values(event)]
        assert values == [
            ("id", 1),
            ("active", 1),
            ("hits", None),
            ("at", None),
            ("city", "Oslo"),
            ("zip", None),
            ("profile", None),
            ("tags", "[]"),
            ("payload", None),
        ]


class TestRows:
    """Test result set consumption and lease release."""

    async def test_row_into_type(self) -> None:
        rows, cursor, lease = _rows([(7, 0, 1, None, "Oslo", "0150", None, "[]", None)])
        event = await rows.row(Event)
        assert event.id == 7
        assert event.home.zip == "0150"
        assert cursor.closed and lease.released == 1

    async def test_row_into_instance(self) -> None:
        rows, _, _ = _rows([(7, 1, 1, None, "Oslo", None, None, "[]", None)])
        event = Event(hits=99)
        assert await rows.row(event) is event
        assert event.hits == 1

    async def test_row_as_tuple(self) -> None:
        rows, _, _ = _rows([("a", 2)], columns=["name", "n"])
        assert await rows.row() == ("a", 2)

    async def test_empty_row_raises_not_found(self) -> None:
        rows, _, lease = _rows([])
        with pytest.raises(NotFoundError):
            await rows.row(Event)
        assert lease.released == 1

    async def test_empty_row_ignored(self) -> None:
        rows, _, lease = _rows([], ignore_not_found=True)
        event = Event(hits=3)
        assert await rows.row(event) is None
        assert event.hits == 3
        assert lease.released == 1

    async def test_invalid_target_rejected(self) -> None:
        rows, _, lease = _rows([(1,)], columns=["id"])
        with pytest.raises(ValidationError):
            await rows.row(42)
        assert lease.released == 1

    async def test_scalar(self) -> None:
        rows, _, _ = _rows([(12,)], columns=["count"])
        assert await rows.scalar() == 12

    async def test_rows_respects_max_rows(self) -> None:
        rows, _, lease = _rows([(i,) for i in range(5)], columns=["id"], max_rows=3)
        assert await rows.rows([]) == [0, 1, 2]
        assert lease.released == 1

    async def test_rows_into_records(self) -> None:
        rows, _, _ = _rows([(1, "Oslo"), (2, "Rome")], columns=["id", "city"])
        events = await rows.rows([], Event)
        assert [(e.id, e.home.city) for e in events] == [(1, "Oslo"), (2, "Rome")]

    async def test_rows_with_scalar_type(self) -> None:
        rows, _, _ = _rows([(1,), (None,), (3,)], columns=["n"])
        assert await rows.rows([], str) == ["1", None, "3"]

    async def test_rows_appends_tuples_for_wide_results(self) -> None:
        rows, _, _ = _rows([(1, "a")], columns=["id", "name"])
        existing = ["x"]
        assert await rows.rows(existing) == ["x", (1, "a")]

    async def test_rows_needs_a_list(self) -> None:
        rows, _, lease = _rows([(1,)], columns=["id"])
        with pytest.raises(ValidationError):
            await rows.rows(())
        assert lease.released == 1

    async def test_close_is_idempotent(self) -> None:
        rows, _, lease = _rows([])
        await rows.close()
        await rows.close()
        assert rows.closed
        assert lease.released == 1


class TestRowsIterator:
    """Test incremental iteration."""

    async def test_next_and_row(self) -> None:
        rows, _, lease = _rows([(1, "Oslo"), (2, "Rome")], columns=["id", "city"])
        seen = []
        async with rows.iterator() as it:
            while await it.next():
                event = await it.row(Event)
                seen.append(event.home.city)
        assert seen == ["Oslo", "Rome"]
        assert lease.released == 1

    async def test_async_for_yields_tuples(self) -> None:
        rows, _, _ = _rows([(1,), (2,)], columns=["id"])
        async with rows.iterator() as it:
            assert [r async for r in it] == [(1,), (2,)]

    async def test_records(self) -> None:
        rows, _, _ = _rows([(1,), (2,)], columns=["id"])
        async with rows.iterator() as it:
            ids = [e.id async for e in it.records(Event)]
        assert ids == [1, 2]

    async def test_row_before_next_rejected(self) -> None:
        rows, _, lease = _rows([(1,)], columns=["id"])
        async with rows.iterator() as it:
            with pytest.raises(ValidationError):
                await it.row()
        assert lease.released == 1

    async def test_next_after_close(self) -> None:
        rows, _, _ = _rows([(1,)], columns=["id"])
        it = rows.iterator()
        await it.close()
        assert await it.next() is False
