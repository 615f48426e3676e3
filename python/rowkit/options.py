"""Handle-level and per-call options."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rowkit.errors import ValidationError

if TYPE_CHECKING:
    from rowkit.selector import Q


@dataclass
class DBOptions:
    """Options of a database handle.

    Connection lifetimes are in seconds; 0 means unlimited.
    """

    max_rows: int = 1000
    string_size: int = 255
    ignore_not_found: bool = False
    without_ping: bool = False
    max_idle_conns: int = 2
    max_open_conns: int = 0
    conn_max_lifetime: float = 0
    conn_max_idle_time: float = 0

    def validate(self) -> DBOptions:
        if self.max_rows < 1:
            raise ValidationError(f"max_rows must be positive, got {self.max_rows}")
        if self.string_size < 1:
            raise ValidationError(f"string_size must be positive, got {self.string_size}")
        for name in ("max_idle_conns", "max_open_conns", "conn_max_lifetime", "conn_max_idle_time"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must not be negative")
        return self


@dataclass
class QueryOptions:
    """Per-call options of get/list/update/delete."""

    table: str | None = None
    cols: Sequence[str] | None = None
    selector: Q | str | None = None
    order_by: Sequence[str] = ()
    offset: int = 0
    limit: int | None = None
    ignore_not_found: bool | None = None
    delete_all: bool = False
    with_total: bool = False

    def validate(self) -> QueryOptions:
        if self.offset < 0:
            raise ValidationError(f"offset must not be negative, got {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise ValidationError(f"limit must not be negative, got {self.limit}")
        if isinstance(self.order_by, str):
            self.order_by = [self.order_by]
        return self


@dataclass
class ListResult:
    """Items of one page and, when requested, the unpaginated total."""

    items: list[Any] = field(default_factory=list)
    total: int | None = None

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
