"""Filter selectors: WHERE-clause predicates independent of SQL text."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from rowkit.errors import ValidationError

OPERATORS = {
    "eq": "=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "ne": "!=",
    "like": "LIKE",
    "ilike": "ILIKE",
    "in": "IN",
    "notin": "NOT IN",
    "isnull": "IS NULL",
    "isnotnull": "IS NOT NULL",
    "contains": "LIKE",
    "icontains": "ILIKE",
    "startswith": "LIKE",
    "istartswith": "ILIKE",
    "endswith": "LIKE",
    "iendswith": "ILIKE",
    "has_key": "JSON_HAS_KEY",
}


def quote(name: str, dialect: str = "sqlite3") -> str:
    """Quote an identifier for ``dialect``, doubling embedded quote characters.

    Example:
        >>> quote("user")
        '`user`'
        >>> quote('we"ird', "postgresql")
        '"we""ird"'
    """
    if dialect in ("postgresql", "postgres"):
        return '"' + name.replace('"', '""') + '"'
    return "`" + name.replace("`", "``") + "`"


def placeholder(dialect: str, index: int) -> str:
    """Positional parameter marker; ``index`` is zero-based."""
    return f"${index + 1}" if dialect in ("postgresql", "postgres") else "?"


# ========== Q Objects for Complex Conditions ==========


@dataclass
class Q:
    """Django-style Q object for filter conditions.

    Supports AND (&), OR (|) and NOT (~) for building WHERE clauses.

    Example:
        >>> # OR condition
        >>> db.list(User, selector=Q(age__gt=18) | Q(vip=True))

        >>> # Combined
        >>> db.list(User, selector=(Q(age__gt=18) | Q(vip=True)) & Q(active=True))

        >>> # Negation
        >>> db.list(User, selector=~Q(banned=True))
    """

    _filters: list[tuple[str, str, Any]] = field(default_factory=list)
    _children: list[tuple[str, Q]] = field(default_factory=list)  # ("AND"/"OR", child_q)
    _negated: bool = False

    def __init__(self, **kwargs: Any) -> None:
        self._filters = []
        self._children = []
        self._negated = False

        for key, value in kwargs.items():
            col, op = _parse_filter_key(key)
            self._filters.append((col, op, value))

    def __or__(self, other: Q) -> Q:
        """Combine with OR."""
        result = Q()
        result._children = [("OR", self), ("OR", other)]
        return result

    def __and__(self, other: Q) -> Q:
        """Combine with AND."""
        result = Q()
        result._children = [("AND", self), ("AND", other)]
        return result

    def __invert__(self) -> Q:
        """Negate the condition."""
        result = Q()
        result._filters = self._filters.copy()
        result._children = self._children.copy()
        result._negated = not self._negated
        return result

    def is_empty(self) -> bool:
        """True when the selector renders no clause at all."""
        return not self._filters and all(child.is_empty() for _, child in self._children)

    def columns(self) -> list[str]:
        """Base column names referenced anywhere in the expression."""
        names = [col.split("__", 1)[0] for col, _, _ in self._filters]
        for _, child in self._children:
            names.extend(child.columns())
        return names

    def to_sql(
        self,
        dialect: str = "sqlite3",
        columns: Iterable[str] | None = None,
        param_offset: int = 0,
    ) -> tuple[str, list[Any]]:
        """Convert to a WHERE clause fragment and its positional arguments.

        Raises:
            ValidationError: A referenced column is not in ``columns``.
        """
        if columns is not None:
            known = {c.lower() for c in columns}
            for name in self.columns():
                if name.lower() not in known:
                    raise ValidationError(f"unknown column {name!r} in selector")
        return self._render(dialect, param_offset)

    def _render(self, dialect: str, param_offset: int) -> tuple[str, list[Any]]:
        params: list[Any] = []

        if self._children:
            parts = []
            for _join_type, child in self._children:
                child_sql, child_params = child._render(dialect, param_offset + len(params))
                if child_sql:
                    parts.append(child_sql)
                    params.extend(child_params)

            if not parts:
                return "", []

            connector = " OR " if self._children[0][0] == "OR" else " AND "
            sql = f"({connector.join(parts)})"

        elif self._filters:
            filter_parts = []
            for col, op, value in self._filters:
                sql_part, filter_params = _build_filter_sql(col, op, value, dialect, param_offset + len(params))
                filter_parts.append(sql_part)
                params.extend(filter_params)

            sql = " AND ".join(filter_parts)
            if len(filter_parts) > 1:
                sql = f"({sql})"
        else:
            return "", []

        if self._negated:
            sql = f"NOT {sql}"

        return sql, params


def _parse_filter_key(key: str) -> tuple[str, str]:
    """Parse a Django-style filter key into column and operator name.

    Supports:
    - Standard operators: field__gt, field__in, etc.
    - JSON path access: metadata__key, metadata__key__subkey
    - JSON key test: metadata__has_key
    """
    if "__" in key:
        parts = key.rsplit("__", 1)
        if len(parts) == 2 and parts[1] in OPERATORS:
            return parts[0], parts[1]

    return key, "eq"


_JSON_KEY = re.compile(r"\w+")


def json_path(keys: Iterable[Any]) -> str:
    """SQLite JSON path selecting nested object ``keys``.

    Example:
        >>> json_path(["a", "b c"])
        '$.a."b c"'

    Raises:
        ValidationError: A key contains a double quote.
    """
    path = "$"
    for key in map(str, keys):
        if _JSON_KEY.fullmatch(key):
            path += f".{key}"
        elif '"' in key:
            raise ValidationError(f"invalid JSON key {key!r}")
        else:
            path += f'."{key}"'
    return path


def _build_json_path_sql(col: str, path: list[str], dialect: str, param_offset: int) -> tuple[str, list[Any]]:
    """Build SQL for JSON path access; keys are bound as parameters.

    PostgreSQL: col->$1->>$2
    SQLite: json_extract(col, ?) with '$.key1.key2'
    """
    if dialect in ("postgresql", "postgres"):
        result = col
        for i in range(len(path)):
            arrow = "->>" if i == len(path) - 1 else "->"
            result = f"{result}{arrow}{placeholder(dialect, param_offset + i)}"
        return result, list(path)
    return f"json_extract({col}, {placeholder(dialect, param_offset)})", [json_path(path)]


def _build_filter_sql(col: str, op: str, value: Any, dialect: str, param_offset: int) -> tuple[str, list[Any]]:
    """Build SQL for a single filter condition."""

    def ph(offset: int = 0) -> str:
        return placeholder(dialect, param_offset + offset)

    keys: list[str] = []
    if "__" in col:
        col, *keys = col.split("__")

    quoted = quote(col, dialect)
    postgres = dialect in ("postgresql", "postgres")

    if op == "has_key":
        if postgres:
            return f"{quoted} ? {ph()}", [value]
        return f"json_extract({quoted}, {ph()}) IS NOT NULL", [json_path([*keys, value])]

    if op == "contains" and keys and not postgres:
        return f"EXISTS (SELECT 1 FROM json_each({quoted}, {ph()}) WHERE value = {ph(1)})", [json_path(keys), value]

    params: list[Any] = []
    col_ref = quoted
    if keys:
        col_ref, params = _build_json_path_sql(quoted, keys, dialect, param_offset)
    n = len(params)

    if op == "eq":
        if value is None:
            return f"{col_ref} IS NULL", params
        return f"{col_ref} = {ph(n)}", [*params, value]

    elif op in ("in", "notin"):
        values = list(value)
        if not values:
            return ("1 = 0", []) if op == "in" else ("1 = 1", [])
        placeholders = ", ".join(ph(n + i) for i in range(len(values)))
        return f"{col_ref} {OPERATORS[op]} ({placeholders})", [*params, *values]

    elif op == "isnull":
        return (f"{col_ref} IS NULL" if value else f"{col_ref} IS NOT NULL"), params

    elif op == "isnotnull":
        return (f"{col_ref} IS NOT NULL" if value else f"{col_ref} IS NULL"), params

    elif op in ("contains", "icontains", "startswith", "istartswith", "endswith", "iendswith"):
        pattern = {
            "contains": f"%{value}%",
            "startswith": f"{value}%",
            "endswith": f"%{value}",
        }[op.removeprefix("i")]
        op_sql = "ILIKE" if op.startswith("i") and postgres else "LIKE"
        return f"{col_ref} {op_sql} {ph(n)}", [*params, pattern]

    op_sql = OPERATORS[op]
    if op_sql == "ILIKE" and not postgres:
        op_sql = "LIKE"
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    return f"{col_ref} {op_sql} {ph(n)}", [*params, value]


# ========== Label-selector strings ==========

_KEY = r"[A-Za-z_][A-Za-z0-9_]*"
_REQUIREMENT = re.compile(
    rf"""^\s*(?:
        !\s*(?P<absent>{_KEY})
      | (?P<key>{_KEY})
        (?:
            \s*(?P<op>==|!=|>=|<=|=|>|<)\s*(?P<value>.*?)
          | \s+(?P<setop>in|notin)\s*\((?P<values>[^()]*)\)
        )?
    )\s*$""",
    re.VERBOSE,
)
_COMPARE = {"=": "eq", "==": "eq", "!=": "ne", ">": "gt", ">=": "gte", "<": "lt", "<=": "lte"}
_INT = re.compile(r"[-+]?\d+")
_FLOAT = re.compile(r"[-+]?(\d+\.\d*|\.\d+)([eE][-+]?\d+)?")


def _literal(text: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    if _INT.fullmatch(text):
        return int(text)
    if _FLOAT.fullmatch(text):
        return float(text)
    return text


def _split_requirements(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    start = 0
    quote_char = ""
    for i, ch in enumerate(text):
        if quote_char:
            if ch == quote_char:
                quote_char = ""
        elif ch in "'\"":
            quote_char = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(f"unbalanced ')' in selector {text!r}")
        elif ch == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    if depth or quote_char:
        raise ValidationError(f"unterminated selector {text!r}")
    parts.append(text[start:])
    return parts


def parse(text: str) -> Q:
    """Parse a label-selector string into a Q object.

    Requirements are comma-separated and ANDed together:
    ``key=value``, ``key==value``, ``key!=value``, ``key>3``, ``key<=3``,
    ``key in (a,b)``, ``key notin (a,b)``, ``key`` (not null) and
    ``!key`` (null). Numeric literals become numbers; quote them to keep
    them as strings.

    Example:
        >>> parse("name=alice,age>3,status in (a,b),!deleted_at")

    Raises:
        ValidationError: The text is not a valid selector.
    """
    result = Q()
    if not text or not text.strip():
        return result

    for raw in _split_requirements(text):
        m = _REQUIREMENT.match(raw)
        if m is None or not raw.strip():
            raise ValidationError(f"invalid selector requirement {raw.strip()!r}")

        if m.group("absent"):
            result._filters.append((m.group("absent"), "isnull", True))
        elif m.group("op"):
            result._filters.append((m.group("key"), _COMPARE[m.group("op")], _literal(m.group("value"))))
        elif m.group("setop"):
            values = [_literal(v) for v in m.group("values").split(",") if v.strip()]
            result._filters.append((m.group("key"), m.group("setop"), values))
        else:
            result._filters.append((m.group("key"), "isnull", False))

    return result
