"""Tests for the CREATE TABLE tokenizer and rewriter."""

from __future__ import annotations

import pytest

from rowkit import DDLParseError
from rowkit.migrations import DDLDocument
from rowkit.migrations.ddl import clause_column, split_clauses

EXAMPLE = "CREATE TABLE \"t\" (`a` INT, `b` TEXT DEFAULT 'x,y', CONSTRAINT \"pk\" PRIMARY KEY(`a`))"


@pytest.fixture
def doc() -> DDLDocument:
    return DDLDocument.parse(EXAMPLE)


class TestParse:
    """Test tokenizing CREATE TABLE statements."""

    def test_clauses(self, doc: DDLDocument) -> None:
        assert doc.head == 'CREATE TABLE "t"'
        assert doc.clauses == ["`a` INT", "`b` TEXT DEFAULT 'x,y'", 'CONSTRAINT "pk" PRIMARY KEY(`a`)']
        assert doc.tail == ""

    def test_compile_round_trip(self, doc: DDLDocument) -> None:
        assert doc.compile() == EXAMPLE

    def test_columns_skip_constraints(self, doc: DDLDocument) -> None:
        assert doc.get_columns() == ["a", "b"]

    def test_identifier_forms(self) -> None:
        doc = DDLDocument.parse(
            'CREATE TABLE items (id integer PRIMARY KEY, name varchar(10) NOT NULL, [weird col] text, "q""x" int)'
        )
        assert doc.get_columns() == ["id", "name", "weird col", 'q"x']

    def test_doubled_quote_is_literal(self) -> None:
        doc = DDLDocument.parse("CREATE TABLE t (a TEXT DEFAULT 'it''s, ok', b INT)")
        assert doc.clauses == ["a TEXT DEFAULT 'it''s, ok'", "b INT"]

    def test_other_quote_kinds_inside_literal(self) -> None:
        doc = DDLDocument.parse("CREATE TABLE t (a TEXT DEFAULT '\"(,', b INT)")
        assert doc.get_columns() == ["a", "b"]

    def test_table_options_tail(self) -> None:
        doc = DDLDocument.parse("CREATE TABLE t (a INT) WITHOUT ROWID")
        assert doc.tail == "WITHOUT ROWID"
        assert doc.compile() == "CREATE TABLE t (a INT) WITHOUT ROWID"

    def test_temporary_table(self) -> None:
        assert DDLDocument.parse("create temp table t (a int)").get_columns() == ["a"]

    @pytest.mark.parametrize(
        "text",
        [
            "CREATE TABLE t (a TEXT DEFAULT 'x)",
            "CREATE TABLE t (a INT))",
            "CREATE TABLE t (a INT",
            "CREATE TABLE t",
            "SELECT 1",
        ],
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(DDLParseError):
            DDLDocument.parse(text)

    def test_split_clauses_returns_tail(self) -> None:
        assert split_clauses("a, b(1, 2)) STRICT") == (["a", "b(1, 2)"], "STRICT")

    @pytest.mark.parametrize(
        "clause",
        ["PRIMARY KEY (a)", "CHECK (a > 0)", "CONSTRAINT x UNIQUE (a)", "unique (a)", "FOREIGN KEY (a) REFERENCES p(id)"],
    )
    def test_table_constraints_have_no_column(self, clause: str) -> None:
        assert clause_column(clause) is None

    @pytest.mark.parametrize(
        ("clause", "column"),
        [
            ("checksum TEXT", "checksum"),
            ("check_in TEXT", "check_in"),
            ("unique_code TEXT UNIQUE", "unique_code"),
            ("constraints text", "constraints"),
            ("foreign_id INT REFERENCES p(id)", "foreign_id"),
            ("primary_email TEXT", "primary_email"),
            ("primary TEXT", "primary"),
            ('"check" TEXT', "check"),
        ],
    )
    def test_keyword_prefixed_columns(self, clause: str, column: str) -> None:
        assert clause_column(clause) == column

    def test_bare_keyword_prefixed_columns(self) -> None:
        doc = DDLDocument.parse(
            "CREATE TABLE t (id INTEGER, checksum TEXT, unique_code TEXT, name TEXT, CHECK (id > 0))"
        )
        assert doc.get_columns() == ["id", "checksum", "unique_code", "name"]
        assert doc.find_column("CHECKSUM") == 1


class TestConstraints:
    """Test named constraint editing."""

    def test_has_constraint(self, doc: DDLDocument) -> None:
        assert doc.has_constraint("pk")
        assert doc.has_constraint("PK")
        assert not doc.has_constraint("p")

    def test_add_constraint_replaces_existing(self, doc: DDLDocument) -> None:
        doc.add_constraint("pk", 'CONSTRAINT "pk" PRIMARY KEY(`b`)')
        assert doc.clauses[-1] == 'CONSTRAINT "pk" PRIMARY KEY(`b`)'
        assert len(doc.clauses) == 3

    def test_add_constraint_appends_new(self, doc: DDLDocument) -> None:
        doc.add_constraint("uq_b", "CONSTRAINT uq_b UNIQUE(`b`)")
        assert doc.clauses[-1] == "CONSTRAINT uq_b UNIQUE(`b`)"
        assert doc.has_constraint("uq_b")

    def test_remove_constraint(self, doc: DDLDocument) -> None:
        assert doc.remove_constraint("pk")
        assert not doc.has_constraint("pk")
        assert not doc.remove_constraint("pk")


class TestColumns:
    """Test column clause editing."""

    def test_find_column_is_case_insensitive(self, doc: DDLDocument) -> None:
        assert doc.find_column("B") == 1
        assert doc.find_column("pk") is None

    def test_replace_column(self, doc: DDLDocument) -> None:
        assert doc.replace_column("a", "`a` BIGINT NOT NULL")
        assert doc.clauses[0] == "`a` BIGINT NOT NULL"
        assert not doc.replace_column("zz", "`zz` INT")

    def test_remove_column(self, doc: DDLDocument) -> None:
        assert doc.remove_column("b")
        assert doc.get_columns() == ["a"]
        assert not doc.remove_column("b")

    def test_add_column_goes_before_constraints(self, doc: DDLDocument) -> None:
        doc.add_column("`c` TEXT")
        assert doc.get_columns() == ["a", "b", "c"]
        assert doc.clauses[2] == "`c` TEXT"
        assert doc.clauses[3].startswith("CONSTRAINT")

    def test_add_column_without_constraints(self) -> None:
        doc = DDLDocument.parse("CREATE TABLE t (a INT)")
        doc.add_column("b TEXT")
        assert doc.compile() == "CREATE TABLE t (a INT, b TEXT)"


class TestRename:
    """Test rewriting the table name."""

    def test_rename_quoted(self, doc: DDLDocument) -> None:
        assert doc.rename("t", "t__temp")
        assert doc.head == "CREATE TABLE `t__temp`"

    def test_rename_bare(self) -> None:
        doc = DDLDocument.parse("CREATE TABLE items (a INT)")
        assert doc.rename("items", "items__temp")
        assert doc.compile() == "CREATE TABLE `items__temp` (a INT)"

    def test_rename_missing(self, doc: DDLDocument) -> None:
        assert not doc.rename("other", "x")
        assert doc.head == 'CREATE TABLE "t"'
