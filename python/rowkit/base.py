"""Declarative base for record types."""

from __future__ import annotations

import inspect
import re
import typing
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from rowkit.fields import FieldSpec, Mapped

if TYPE_CHECKING:
    from collections.abc import Mapping

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert a CamelCase type name into snake_case.

    Example:
        >>> snake_case("UserProfile")
        'user_profile'
        >>> snake_case("HTTPRequestLog")
        'http_request_log'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@runtime_checkable
class Describable(Protocol):
    """Anything that can describe its own fields to the schema reflector."""

    __tablename__: ClassVar[str]
    __record_fields__: ClassVar[Mapping[str, FieldSpec]]


def _is_mapped(hint: Any) -> bool:
    return "Mapped[" in str(hint) or typing.get_origin(hint) is Mapped


class RecordMeta(type):
    """Metaclass for record types that collects field definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> RecordMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Record class itself
        if name == "Record" and not bases:
            return cls

        tablename = namespace.get("__tablename__")
        if tablename is None:
            tablename = snake_case(name)
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        # Inherited fields first, so subclasses extend the parent column order
        fields: dict[str, FieldSpec] = {}
        for base in reversed(cls.__mro__[1:]):
            for attr, spec in getattr(base, "__record_fields__", {}).items():
                fields[attr] = replace(spec)

        try:
            annotations = inspect.get_annotations(cls)
        except NameError:
            annotations = dict(namespace.get("__annotations__", {}))

        for attr, hint in annotations.items():
            if attr.startswith("_"):
                continue
            value = namespace.get(attr)
            if isinstance(value, FieldSpec):
                fields[attr] = replace(value, attr=attr)
            elif _is_mapped(hint):
                fields[attr] = FieldSpec(attr=attr, default=value)

        # FieldSpecs assigned without an annotation still describe a column
        for attr, value in namespace.items():
            if isinstance(value, FieldSpec) and attr not in fields and not attr.startswith("_"):
                fields[attr] = replace(value, attr=attr)

        # Field specs live in __record_fields__, not as class attributes
        for attr in fields:
            if isinstance(namespace.get(attr), FieldSpec):
                delattr(cls, attr)

        cls.__record_fields__ = fields  # type: ignore[attr-defined]
        cls.__primary_key__ = next(  # type: ignore[attr-defined]
            (attr for attr, spec in fields.items() if spec.primary_key), None
        )
        return cls


class Record(metaclass=RecordMeta):
    """Base class for all record types.

    Example:
        >>> class User(Record):
        ...     __tablename__ = "users"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str] = mapped_column(max_length=100)
    """

    __tablename__: ClassVar[str]
    __record_fields__: ClassVar[dict[str, FieldSpec]]
    __primary_key__: ClassVar[str | None]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a record with the given field values."""
        fields = self.__record_fields__
        for key, value in kwargs.items():
            if key not in fields:
                raise TypeError(f"Unknown field: {key}")
            setattr(self, key, value)

        for attr, spec in fields.items():
            if attr in kwargs:
                continue
            default = spec.default() if callable(spec.default) else spec.default
            setattr(self, attr, default)

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk:
            return f"<{self.__class__.__name__} {pk}={getattr(self, pk, None)!r}>"
        return f"<{self.__class__.__name__}>"

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return all(
            getattr(self, attr, None) == getattr(other, attr, None)
            for attr in self.__record_fields__
        )

    __hash__ = None  # type: ignore[assignment]

    def to_dict(self) -> dict[str, Any]:
        """Convert the record into a JSON-ready dictionary.

        Keys honour ``json_name`` overrides; nested records are converted
        recursively.
        """
        result: dict[str, Any] = {}
        for attr, spec in self.__record_fields__.items():
            if spec.skip:
                continue
            value = getattr(self, attr, None)
            if isinstance(value, Record):
                value = value.to_dict()
            result[spec.json_name or attr] = value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        """Create a record from a dictionary produced by ``to_dict``."""
        from rowkit.schema import resolve_field_types

        types = resolve_field_types(cls)
        values: dict[str, Any] = {}
        for attr, spec in cls.__record_fields__.items():
            key = spec.json_name or attr
            if key in data:
                value = data[key]
            elif attr in data:
                value = data[attr]
            else:
                continue
            target = types.get(attr)
            if isinstance(value, dict) and isinstance(target, type) and issubclass(target, Record):
                value = target.from_dict(value)
            elif isinstance(value, str) and target is datetime:
                value = datetime.fromisoformat(value)
            values[attr] = value
        return cls(**values)
