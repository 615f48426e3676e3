"""CREATE TABLE rewriting for dialects without native ALTER/DROP COLUMN.

The tokenizer only tracks quotes, brackets and top-level commas. It splits
a statement into a header and opaque clauses; it is not a SQL parser.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rowkit.errors import DDLParseError, NotFoundError
from rowkit.selector import quote

if TYPE_CHECKING:
    from rowkit.db import Executor

logger = logging.getLogger(__name__)

_QUOTES = "'\"`"
_HEAD = re.compile(r"^\s*CREATE\s+(?:TEMP(?:ORARY)?\s+)?TABLE\s", re.IGNORECASE)
_TABLE_CONSTRAINTS = {"CONSTRAINT", "CHECK", "UNIQUE", "FOREIGN"}
_IDENT = re.compile(r'^(?:"((?:[^"]|"")+)"|`((?:[^`]|``)+)`|\[([^\]]+)\]|(\w+))')


def _constraint_pattern(name: str) -> re.Pattern[str]:
    return re.compile(r"^CONSTRAINT\s+[\"`]?" + re.escape(name) + r"[\"`\s]", re.IGNORECASE)


def split_clauses(body: str) -> tuple[list[str], str]:
    """Split the text after the opening bracket into top-level clauses.

    Returns the clauses and whatever follows the closing bracket.

    Raises:
        DDLParseError: Quotes or brackets are unbalanced.
    """
    clauses: list[str] = []
    buf: list[str] = []
    depth = 0
    active = ""
    i = 0
    while i < len(body):
        c = body[i]
        if c in _QUOTES:
            if i + 1 < len(body) and body[i + 1] == c:
                # Doubled quote is a literal character
                buf.append(c + c)
                i += 2
                continue
            if not active:
                active = c
            elif active == c:
                active = ""
        elif not active:
            if c == "(":
                depth += 1
            elif c == ")":
                depth -= 1
                if depth < 0:
                    clauses.append("".join(buf).strip())
                    return [cl for cl in clauses if cl], body[i + 1:].strip()
            elif c == "," and depth == 0:
                clauses.append("".join(buf).strip())
                buf = []
                i += 1
                continue
        buf.append(c)
        i += 1

    raise DDLParseError("invalid DDL, unbalanced brackets or quotes")


def clause_column(clause: str) -> str | None:
    """Column name declared by a clause, or None for table constraints."""
    m = _IDENT.match(clause)
    if m is None:
        return None
    quoted_double, quoted_back, bracketed, bare = m.groups()
    if quoted_double is not None:
        return quoted_double.replace('""', '"')
    if quoted_back is not None:
        return quoted_back.replace("``", "`")
    if bracketed is not None:
        return bracketed
    keyword = bare.upper()
    if keyword in _TABLE_CONSTRAINTS:
        return None
    if keyword == "PRIMARY" and re.match(r"\s*KEY\b", clause[m.end():], re.IGNORECASE):
        return None
    return bare


@dataclass
class DDLDocument:
    """A CREATE TABLE statement as a header and ordered clauses."""

    head: str
    clauses: list[str] = field(default_factory=list)
    tail: str = ""

    @classmethod
    def parse(cls, text: str) -> DDLDocument:
        """Tokenize a CREATE TABLE statement.

        Example:
            >>> doc = DDLDocument.parse('CREATE TABLE "t" (`a` INT, `b` TEXT DEFAULT \\'x,y\\')')
            >>> doc.get_columns()
            ['a', 'b']
        """
        if not _HEAD.match(text):
            raise DDLParseError(f"invalid DDL, not a CREATE TABLE statement: {text[:60]!r}")

        active = ""
        for i, c in enumerate(text):
            if c in _QUOTES:
                if not active:
                    active = c
                elif active == c:
                    active = ""
            elif c == "(" and not active:
                clauses, tail = split_clauses(text[i + 1:])
                if "(" in tail or ")" in tail:
                    raise DDLParseError("invalid DDL, unbalanced brackets")
                return cls(head=text[:i].strip(), clauses=clauses, tail=tail)

        raise DDLParseError("invalid DDL, missing column list")

    def compile(self) -> str:
        sql = self.head
        if self.clauses:
            sql += f" ({', '.join(self.clauses)})"
        if self.tail:
            sql += f" {self.tail}"
        return sql

    def add_constraint(self, name: str, sql: str) -> None:
        """Replace the constraint called ``name``, or append ``sql``."""
        pattern = _constraint_pattern(name)
        for i, clause in enumerate(self.clauses):
            if pattern.match(clause):
                self.clauses[i] = sql
                return
        self.clauses.append(sql)

    def remove_constraint(self, name: str) -> bool:
        pattern = _constraint_pattern(name)
        for i, clause in enumerate(self.clauses):
            if pattern.match(clause):
                del self.clauses[i]
                return True
        return False

    def has_constraint(self, name: str) -> bool:
        pattern = _constraint_pattern(name)
        return any(pattern.match(clause) for clause in self.clauses)

    def get_columns(self) -> list[str]:
        """Names of the declared columns, skipping table constraints."""
        return [name for name in map(clause_column, self.clauses) if name is not None]

    def find_column(self, name: str) -> int | None:
        """Index of the clause declaring ``name`` (case-insensitive)."""
        for i, clause in enumerate(self.clauses):
            column = clause_column(clause)
            if column is not None and column.lower() == name.lower():
                return i
        return None

    def replace_column(self, name: str, clause: str) -> bool:
        i = self.find_column(name)
        if i is None:
            return False
        self.clauses[i] = clause
        return True

    def remove_column(self, name: str) -> bool:
        i = self.find_column(name)
        if i is None:
            return False
        del self.clauses[i]
        return True

    def add_column(self, clause: str) -> None:
        """Insert a column clause ahead of the table constraints."""
        for i, existing in enumerate(self.clauses):
            if clause_column(existing) is None:
                self.clauses.insert(i, clause)
                return
        self.clauses.append(clause)

    def rename(self, old: str, new: str) -> bool:
        """Rewrite the table name in the header."""
        pattern = re.compile(
            r"(?<=\s)(?:\"" + re.escape(old) + r"\"|`" + re.escape(old) + r"`|'" + re.escape(old)
            + r"'|\[" + re.escape(old) + r"\]|" + re.escape(old) + r")(?=\s|$)"
        )
        head, count = pattern.subn(lambda _: quote(new), self.head, count=1)
        self.head = head
        return count > 0


async def raw_ddl(executor: Executor, table: str) -> str:
    """Fetch the CREATE TABLE statement of a live table."""
    rows = await executor.query(
        "SELECT sql FROM sqlite_master WHERE type = 'table' AND tbl_name = ? AND name = ?", table, table
    )
    sql = await rows.scalar()
    if not sql:
        raise NotFoundError(f"table {table!r} not found")
    return sql


async def _index_ddl(executor: Executor, table: str) -> list[tuple[str, str]]:
    rows = await executor.query(
        "SELECT name, sql FROM sqlite_master WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL", table
    )
    return await rows.rows([])


def _references(sql: str, column: str) -> bool:
    _, _, columns = sql.partition("(")
    return re.search(r"(?<![\w])[\"`\[]?" + re.escape(column) + r"[\"`\]]?(?![\w])", columns, re.IGNORECASE) is not None


async def recreate_table(executor: Executor, table: str, mutate: Callable[[DDLDocument], None]) -> None:
    """Rebuild ``table`` from a rewritten copy of its own DDL.

    The live DDL is renamed to ``<table>__temp`` and handed to ``mutate``.
    Rows are copied for the columns that exist both before and after the
    mutation, then the original is dropped and the copy renamed back.
    Indexes are recreated unless they cover a removed column.

    The whole sequence runs inside a SAVEPOINT on one connection leased
    from ``executor``; any failure rolls every step back.
    """
    async with executor.pinned() as pinned:
        await _rebuild(pinned, table, mutate)


async def _rebuild(executor: Executor, table: str, mutate: Callable[[DDLDocument], None]) -> None:
    doc = DDLDocument.parse(await raw_ddl(executor, table))
    before = doc.get_columns()

    temp = f"{table}__temp"
    if not doc.rename(table, temp):
        raise DDLParseError(f"table name {table!r} not found in {doc.head!r}")

    mutate(doc)
    after = {name.lower() for name in doc.get_columns()}
    copied = [name for name in before if name.lower() in after]
    removed = [name for name in before if name.lower() not in after]

    indexes = []
    for name, sql in await _index_ddl(executor, table):
        if any(_references(sql, column) for column in removed):
            logger.warning("dropping index %s on removed column of %s", name, table)
            continue
        indexes.append(sql)

    cols = ", ".join(quote(c) for c in copied)
    statements = [doc.compile()]
    if copied:
        statements.append(f"INSERT INTO {quote(temp)} ({cols}) SELECT {cols} FROM {quote(table)}")
    statements += [
        f"DROP TABLE {quote(table)}",
        f"ALTER TABLE {quote(temp)} RENAME TO {quote(table)}",
        *indexes,
    ]

    await executor.exec("SAVEPOINT rowkit_recreate")
    try:
        for sql in statements:
            await executor.exec(sql)
    except BaseException:
        await executor.exec("ROLLBACK TO rowkit_recreate")
        await executor.exec("RELEASE rowkit_recreate")
        raise
    await executor.exec("RELEASE rowkit_recreate")
    logger.info("recreated table %s", table)
