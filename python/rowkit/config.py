"""INI configuration for database handles."""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rowkit.errors import ValidationError
from rowkit.options import DBOptions

if TYPE_CHECKING:
    from rowkit.db import DB
    from rowkit.driver import Registry


@dataclass
class DBConfig:
    """Parse and represent the ``[database]`` section of an INI file.

    Example rowkit.ini:
        [database]
        dialect = sqlite3
        dsn = app.db
        max_rows = 500
        ignore_not_found = false
        max_open_conns = 4
        conn_max_lifetime = 300
    """

    dsn: str | None = None
    """Data source, e.g. a SQLite file path."""

    dialect: str | None = None
    """Registered dialect name; defaults to sqlite3 once a dsn is set."""

    options: DBOptions = field(default_factory=DBOptions)
    """Handle options."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Additional configuration options."""

    _config_path: Path | None = None
    """Path to the config file (internal)."""

    @classmethod
    def from_ini(cls, path: Path | str, section: str = "database") -> DBConfig:
        """Load configuration from an INI file.

        Relative SQLite paths are resolved against the file's directory.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValidationError: If the section is missing or a value is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        config = configparser.ConfigParser()
        config.read(path)

        if section not in config:
            raise ValidationError(f"No [{section}] section in {path}")

        values = config[section]
        defaults = DBOptions()
        try:
            options = DBOptions(
                max_rows=values.getint("max_rows", defaults.max_rows),
                string_size=values.getint("string_size", defaults.string_size),
                ignore_not_found=values.getboolean("ignore_not_found", defaults.ignore_not_found),
                without_ping=values.getboolean("without_ping", defaults.without_ping),
                max_idle_conns=values.getint("max_idle_conns", defaults.max_idle_conns),
                max_open_conns=values.getint("max_open_conns", defaults.max_open_conns),
                conn_max_lifetime=values.getfloat("conn_max_lifetime", defaults.conn_max_lifetime),
                conn_max_idle_time=values.getfloat("conn_max_idle_time", defaults.conn_max_idle_time),
            )
        except ValueError as e:
            raise ValidationError(f"[{section}] in {path}: {e}") from e

        dsn = values.get("dsn")
        if dsn and dsn != ":memory:" and not dsn.startswith("file:") and not Path(dsn).is_absolute():
            dsn = str(path.parent / dsn)

        known_keys = {"dialect", "dsn", *DBOptions.__dataclass_fields__}
        extra = {k: v for k, v in values.items() if k not in known_keys}

        return cls(
            dsn=dsn,
            dialect=values.get("dialect"),
            options=options,
            extra=extra,
            _config_path=path,
        )

    def validate(self) -> DBConfig:
        if not self.dsn:
            raise ValidationError("No dsn configured")
        if not self.dialect:
            self.dialect = "sqlite3"
        self.options.validate()
        return self

    async def open(self, *, registry: Registry | None = None) -> DB:
        """Open a handle with this configuration."""
        from rowkit.db import open_db

        self.validate()
        return await open_db(self.dialect, self.dsn, self.options, registry=registry)
