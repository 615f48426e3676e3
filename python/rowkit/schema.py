"""Schema reflection: record types to ordered column bindings.

Bindings are derived once per record type and cached for the lifetime of
the process. Derivation is a pure function of the type, so concurrent first
lookups may both derive; the first one stored wins and the rest are
discarded.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import sys
import types
import typing
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rowkit.base import Describable, snake_case
from rowkit.errors import ValidationError
from rowkit.fields import ColumnBinding, FieldSpec, Mapped, StorageKind

logger = logging.getLogger(__name__)

_fields_cache: dict[type, TableFields] = {}
_hints_cache: dict[type, dict[str, tuple[Any, bool]]] = {}


@dataclass(frozen=True)
class TableFields:
    """Ordered column bindings of one record type."""

    record_type: type
    bindings: tuple[ColumnBinding, ...]
    _by_name: dict[str, ColumnBinding] = field(default_factory=dict, repr=False, compare=False)

    def __iter__(self) -> typing.Iterator[ColumnBinding]:
        return iter(self.bindings)

    def __len__(self) -> int:
        return len(self.bindings)

    @property
    def names(self) -> list[str]:
        return [b.name for b in self.bindings]

    @property
    def primary_keys(self) -> list[ColumnBinding]:
        return [b for b in self.bindings if b.primary_key]

    def get(self, name: str) -> ColumnBinding | None:
        """Look up a binding by column name, case-insensitively."""
        return self._by_name.get(name.lower())


@dataclass(frozen=True)
class TableSchema:
    """Desired schema of one table."""

    name: str
    fields: TableFields
    options: tuple[str, ...] = ()
    comment: str | None = None


def _unwrap(hint: Any) -> tuple[Any, bool]:
    """Strip Mapped[...] and Optional[...] from an annotation.

    Returns the inner type and whether None was allowed.
    """
    if typing.get_origin(hint) is Mapped:
        hint = typing.get_args(hint)[0]

    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        args = typing.get_args(hint)
        non_none = [a for a in args if a is not type(None)]
        optional = len(non_none) != len(args)
        if len(non_none) == 1:
            return non_none[0], optional
        return hint, optional
    return hint, False


def _resolve_hints(cls: type) -> dict[str, tuple[Any, bool]]:
    try:
        return _hints_cache[cls]
    except KeyError:
        pass

    try:
        hints = typing.get_type_hints(cls, localns={"Mapped": Mapped})
    except Exception:
        # Resolve class by class so one bad annotation only loses its own class
        hints = {}
        for klass in reversed(cls.__mro__):
            if not isinstance(klass, Describable):
                continue
            module = sys.modules.get(klass.__module__)
            globalns = {"Mapped": Mapped, **getattr(module, "__dict__", {})}
            try:
                hints.update(inspect.get_annotations(klass, globals=globalns, eval_str=True))
            except Exception as e:
                logger.warning("cannot resolve annotations of %s: %s", klass.__name__, e)

    resolved = {attr: _unwrap(hint) for attr, hint in hints.items()}
    return _hints_cache.setdefault(cls, resolved)


def resolve_field_types(cls: type) -> dict[str, Any]:
    """Map each annotated attribute of ``cls`` to its inner Python type."""
    return {attr: py_type for attr, (py_type, _) in _resolve_hints(cls).items()}


def _is_record_type(py_type: Any) -> bool:
    return isinstance(py_type, type) and isinstance(py_type, Describable)


def _kind_of(spec: FieldSpec, py_type: Any) -> StorageKind | None:
    if spec.kind is not None:
        return spec.kind
    if spec.is_json:
        return StorageKind.JSON
    if py_type is None:
        return None

    origin = typing.get_origin(py_type) or py_type
    if not isinstance(origin, type):
        return None
    if issubclass(origin, bool):
        return StorageKind.BOOL
    if issubclass(origin, int):
        return StorageKind.UINT if spec.unsigned else StorageKind.INT
    if issubclass(origin, float):
        return StorageKind.FLOAT
    if issubclass(origin, str):
        return StorageKind.STRING
    if issubclass(origin, datetime):
        return StorageKind.TIME
    if issubclass(origin, (bytes, bytearray)):
        return StorageKind.BYTES
    if issubclass(origin, (dict, list)) or _is_record_type(origin) or dataclasses.is_dataclass(origin):
        return StorageKind.JSON
    return None


def _collect(
    cls: type,
    path: tuple[str, ...],
    out: list[ColumnBinding],
    stack: tuple[type, ...],
) -> None:
    hints = _resolve_hints(cls)

    for attr, spec in cls.__record_fields__.items():
        if spec.skip or attr.startswith("_"):
            continue

        py_type, optional = hints.get(attr, (None, False))

        if spec.embedded and spec.name is None:
            if not _is_record_type(py_type):
                logger.warning(
                    "skipping embedded field %s.%s: %r is not a record type",
                    cls.__name__, attr, py_type,
                )
                continue
            if py_type in stack:
                raise ValidationError(f"{cls.__name__}.{attr}: recursive embedding of {py_type.__name__}")
            _collect(py_type, (*path, attr), out, (*stack, py_type))
            continue

        kind = StorageKind.JSON if spec.embedded else _kind_of(spec, py_type)
        if kind is None:
            logger.warning(
                "skipping field %s.%s: cannot determine storage kind for %r",
                cls.__name__, attr, py_type,
            )
            continue

        nullable = spec.nullable if spec.nullable is not None else optional
        auto_increment = bool(spec.autoincrement) and kind in (StorageKind.INT, StorageKind.UINT)

        out.append(
            ColumnBinding(
                name=(spec.name or attr).lower(),
                path=(*path, attr),
                kind=kind,
                python_type=py_type,
                nullable=nullable and not spec.primary_key,
                size=spec.max_length,
                primary_key=spec.primary_key,
                auto_increment=auto_increment,
                unique=spec.unique,
                index=spec.index,
                index_class=spec.index_class,
                server_default=spec.server_default,
                json_name=spec.json_name,
            )
        )


def _derive(cls: type) -> TableFields:
    bindings: list[ColumnBinding] = []
    _collect(cls, (), bindings, (cls,))

    by_name: dict[str, ColumnBinding] = {}
    for binding in bindings:
        if binding.name in by_name:
            raise ValidationError(f"{cls.__name__}: duplicate column name {binding.name!r}")
        by_name[binding.name] = binding

    return TableFields(record_type=cls, bindings=tuple(bindings), _by_name=by_name)


def table_fields(sample: Any) -> TableFields:
    """Return the cached column bindings of a record type or instance.

    Example:
        >>> [b.name for b in table_fields(User)]
        ['id', 'name', 'city', 'zip', 'work']
    """
    cls = sample if isinstance(sample, type) else type(sample)
    try:
        return _fields_cache[cls]
    except KeyError:
        pass

    if not isinstance(cls, Describable):
        raise ValidationError(f"{cls.__name__} is not a record type")

    logger.debug("deriving column bindings for %s", cls.__name__)
    return _fields_cache.setdefault(cls, _derive(cls))


def lookup(sample: Any, name: str) -> ColumnBinding | None:
    """Find the binding of one column, case-insensitively."""
    return table_fields(sample).get(name)


def table_name(sample: Any, override: str | None = None) -> str:
    """Table name of a record type or instance.

    An explicit ``override`` wins, then ``__tablename__``, then the snake_case
    form of the type name.
    """
    if override:
        return override
    cls = sample if isinstance(sample, type) else type(sample)
    name = getattr(cls, "__tablename__", None)
    return name or snake_case(cls.__name__)


def table_schema(
    sample: Any,
    table: str | None = None,
    options: tuple[str, ...] | list[str] = (),
    comment: str | None = None,
) -> TableSchema:
    """Build the desired schema of the table backing ``sample``."""
    return TableSchema(
        name=table_name(sample, table),
        fields=table_fields(sample),
        options=tuple(options),
        comment=comment,
    )
