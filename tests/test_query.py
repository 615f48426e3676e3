"""Tests for SQL generation and statement builders."""

from __future__ import annotations

import pytest

from rowkit import Mapped, Q, Record, ValidationError, delete, insert, mapped_column, select, update
from rowkit.dialects import SqliteDriver
from rowkit.query import (
    gen_count_sql,
    gen_delete_sql,
    gen_get_sql,
    gen_insert_sql,
    gen_list_sql,
    gen_update_sql,
    order_clause,
    to_selector,
)


class Account(Record):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(max_length=32)
    active: Mapped[bool] = mapped_column(default=True)
    note: Mapped[str | None]


@pytest.fixture
def driver() -> SqliteDriver:
    return SqliteDriver(None)


class TestListSql:
    """Test SELECT/COUNT generation."""

    def test_full_query(self) -> None:
        sql, count_sql, args = gen_list_sql("users", ["id", "name"], Q(name="a"), ["-id"], 20, 10)
        assert sql == "SELECT `id`, `name` FROM `users` WHERE `name` = ? ORDER BY `id` DESC LIMIT 10 OFFSET 20"
        assert count_sql == "SELECT COUNT(*) FROM `users` WHERE `name` = ?"
        assert args == ["a"]

    def test_select_star_without_columns(self) -> None:
        sql, count_sql, args = gen_list_sql("users")
        assert sql == "SELECT * FROM `users`"
        assert count_sql == "SELECT COUNT(*) FROM `users`"
        assert args == []

    def test_no_implicit_ordering(self) -> None:
        sql, _, _ = gen_list_sql("users", limit=5)
        assert "ORDER BY" not in sql

    def test_offset_without_limit(self) -> None:
        sql, _, _ = gen_list_sql("users", offset=5)
        assert sql == "SELECT * FROM `users` LIMIT -1 OFFSET 5"

    def test_string_and_mapping_selectors(self) -> None:
        assert gen_list_sql("users", selector="age>3")[2] == [3]
        assert gen_list_sql("users", selector={"name": "x"})[0] == "SELECT * FROM `users` WHERE `name` = ?"

    def test_unknown_selected_column(self) -> None:
        with pytest.raises(ValidationError):
            gen_list_sql("users", ["nope"], columns=["id", "name"])

    def test_unknown_selector_column(self) -> None:
        with pytest.raises(ValidationError):
            gen_list_sql("users", selector=Q(nope=1), columns=["id"])

    def test_postgres_rendering(self) -> None:
        sql, _, args = gen_list_sql("users", ["id"], Q(a=1, b=2), dialect="postgresql", limit=3)
        assert sql == 'SELECT "id" FROM "users" WHERE ("a" = $1 AND "b" = $2) LIMIT 3'
        assert args == [1, 2]

    def test_get_limits_to_one_row(self) -> None:
        sql, args = gen_get_sql("users", None, Q(id=1))
        assert sql == "SELECT * FROM `users` WHERE `id` = ? LIMIT 1"
        assert args == [1]

    def test_count(self) -> None:
        assert gen_count_sql("users", Q(id=1)) == ("SELECT COUNT(*) FROM `users` WHERE `id` = ?", [1])


class TestOrderClause:
    """Test ORDER BY items."""

    def test_forms(self) -> None:
        assert order_clause(["-created", "name asc", "age DESC", "id"]) == (
            "`created` DESC, `name` ASC, `age` DESC, `id` ASC"
        )

    def test_single_string(self) -> None:
        assert order_clause("name") == "`name` ASC"

    def test_empty(self) -> None:
        assert order_clause(None) == ""
        assert order_clause([]) == ""

    @pytest.mark.parametrize("item", ["name sideways", "a b c", "-", "  "])
    def test_invalid_items(self, item: str) -> None:
        with pytest.raises(ValidationError):
            order_clause([item])

    def test_unknown_column(self) -> None:
        with pytest.raises(ValidationError):
            order_clause(["-missing"], columns=["id"])


class TestWriteSql:
    """Test INSERT/UPDATE/DELETE generation."""

    def test_insert_skips_unset_auto_increment_key(self, driver: SqliteDriver) -> None:
        sql, args = gen_insert_sql("accounts", Account(name="a"), driver)
        assert sql == "INSERT INTO `accounts` (`name`, `active`) VALUES (?, ?)"
        assert args == ["a", 1]

    def test_insert_zero_key_left_to_database(self, driver: SqliteDriver) -> None:
        sql, _ = gen_insert_sql("accounts", Account(id=0, name="a"), driver)
        assert "`id`" not in sql

    def test_insert_explicit_key(self, driver: SqliteDriver) -> None:
        sql, args = gen_insert_sql("accounts", Account(id=7, name="a", active=False), driver)
        assert sql == "INSERT INTO `accounts` (`id`, `name`, `active`) VALUES (?, ?, ?)"
        assert args == [7, "a", 0]

    def test_insert_default_values(self, driver: SqliteDriver) -> None:
        sql, args = gen_insert_sql("accounts", Account(active=None), driver)
        assert sql == "INSERT INTO `accounts` DEFAULT VALUES"
        assert args == []

    def test_update_by_primary_key(self, driver: SqliteDriver) -> None:
        sql, args = gen_update_sql("accounts", Account(id=3, name="b"), driver)
        assert sql == "UPDATE `accounts` SET `name` = ?, `active` = ? WHERE `id` = ?"
        assert args == ["b", 1, 3]

    def test_update_by_key_and_selector(self, driver: SqliteDriver) -> None:
        sql, args = gen_update_sql("accounts", Account(id=3, name="b"), driver, Q(note=None))
        assert sql.endswith("WHERE `id` = ? AND `note` IS NULL")
        assert args == ["b", 1, 3]

    def test_update_by_selector_only(self, driver: SqliteDriver) -> None:
        sql, args = gen_update_sql("accounts", Account(name="b"), driver, "name=a")
        assert sql == "UPDATE `accounts` SET `name` = ?, `active` = ? WHERE `name` = ?"
        assert args == ["b", 1, "a"]

    def test_update_without_where_rejected(self, driver: SqliteDriver) -> None:
        with pytest.raises(ValidationError, match="no primary key"):
            gen_update_sql("accounts", Account(name="b"), driver)

    def test_update_with_nothing_to_set_rejected(self, driver: SqliteDriver) -> None:
        with pytest.raises(ValidationError, match="no fields"):
            gen_update_sql("accounts", Account(id=1, active=None), driver)

    def test_delete_requires_selector(self) -> None:
        with pytest.raises(ValidationError, match="delete_all"):
            gen_delete_sql("accounts")
        with pytest.raises(ValidationError):
            gen_delete_sql("accounts", Q())

    def test_delete_all(self) -> None:
        assert gen_delete_sql("accounts", delete_all=True) == ("DELETE FROM `accounts`", [])

    def test_delete_with_selector(self) -> None:
        assert gen_delete_sql("accounts", Q(id=1)) == ("DELETE FROM `accounts` WHERE `id` = ?", [1])

    def test_to_selector_rejects_other_types(self) -> None:
        with pytest.raises(ValidationError):
            to_selector(42)


class TestStatementBuilders:
    """Test the fluent statement builders."""

    def test_select(self) -> None:
        sql, args = select(Account).where(Q(active=True)).order_by("-id").limit(5).to_sql()
        assert sql == (
            "SELECT `id`, `name`, `active`, `note` FROM `accounts` "
            "WHERE `active` = ? ORDER BY `id` DESC LIMIT 5"
        )
        assert args == [True]

    def test_select_is_immutable(self) -> None:
        base = select(Account)
        filtered = base.filter_by(name="x")
        assert base.to_sql()[1] == []
        assert filtered.to_sql()[1] == ["x"]

    def test_select_combines_conditions(self) -> None:
        sql, args = select(Account).where("name=x", Q(active=True)).columns("id").offset(2).to_sql()
        assert sql == "SELECT `id` FROM `accounts` WHERE (`name` = ? AND `active` = ?) LIMIT -1 OFFSET 2"
        assert args == ["x", True]

    def test_select_other_table(self) -> None:
        sql, _ = select(Account).table("archive").to_sql()
        assert "FROM `archive`" in sql

    def test_insert_encodes_values(self) -> None:
        sql, args = insert(Account).values(name="a", active=False).to_sql()
        assert sql == "INSERT INTO `accounts` (`name`, `active`) VALUES (?, ?)"
        assert args == ["a", 0]

    def test_insert_many(self) -> None:
        sql, args = insert(Account).values({"name": "a"}, {"name": "b"}).to_sql()
        assert sql == "INSERT INTO `accounts` (`name`) VALUES (?), (?)"
        assert args == ["a", "b"]

    def test_insert_unknown_column(self) -> None:
        with pytest.raises(ValidationError):
            insert(Account).values(nope=1).to_sql()

    def test_insert_without_values(self) -> None:
        with pytest.raises(ValidationError):
            insert(Account).to_sql()

    def test_update(self) -> None:
        sql, args = update(Account).values(name="z").where(Q(id=1)).to_sql()
        assert sql == "UPDATE `accounts` SET `name` = ? WHERE `id` = ?"
        assert args == ["z", 1]

    def test_update_without_where(self) -> None:
        with pytest.raises(ValidationError):
            update(Account).values(name="z").to_sql()

    def test_delete(self) -> None:
        with pytest.raises(ValidationError):
            delete(Account).to_sql()
        assert delete(Account).all().to_sql() == ("DELETE FROM `accounts`", [])
        assert delete(Account).where(Q(id=2)).to_sql() == ("DELETE FROM `accounts` WHERE `id` = ?", [2])
