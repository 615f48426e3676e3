"""Built-in dialect drivers."""

from rowkit.dialects.sqlite import SqliteDriver

__all__ = ["SqliteDriver"]
