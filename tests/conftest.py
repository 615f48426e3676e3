"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    """Open a SQLite database in a fresh file."""
    from rowkit import open_db

    db = await open_db("sqlite3", str(tmp_path / "test.db"))
    yield db
    await db.close()


@pytest_asyncio.fixture
async def memory_db():
    """Open an in-memory SQLite database (pinned to one connection)."""
    from rowkit import open_db

    db = await open_db("sqlite3", ":memory:")
    yield db
    await db.close()


@pytest.fixture
def ini_file(tmp_path):
    """Write a rowkit.ini next to a database file."""
    path = tmp_path / "rowkit.ini"
    path.write_text(
        "[database]\n"
        "dialect = sqlite3\n"
        "dsn = app.db\n"
        "max_rows = 50\n"
        "ignore_not_found = true\n"
        "max_open_conns = 4\n"
        "conn_max_lifetime = 300\n"
        "pool_name = primary\n"
    )
    return path
