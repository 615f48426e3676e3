"""Bounded pool of driver connections."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from rowkit.errors import RowkitError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PooledConnection:
    """A raw driver connection and its bookkeeping."""

    raw: Any
    created: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)


class ConnectionPool:
    """Async connection pool.

    ``max_open`` bounds the connections in use at once (0 means unbounded);
    up to ``max_idle`` released connections are kept for reuse. Connections
    older than ``max_lifetime`` or idle longer than ``max_idle_time``
    seconds are closed instead of reused (0 disables either limit).

    Example:
        >>> pool = ConnectionPool(lambda: SqliteDriver.connect("app.db"), max_open=4)
        >>> async with pool.connection(timeout=5) as conn:
        ...     await conn.raw.execute("SELECT 1")
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[Any]],
        *,
        max_open: int = 0,
        max_idle: int = 2,
        max_lifetime: float = 0,
        max_idle_time: float = 0,
    ) -> None:
        self._connect = connect
        self._semaphore = asyncio.Semaphore(max_open) if max_open > 0 else None
        self.max_open = max_open
        self.max_idle = max_idle
        self.max_lifetime = max_lifetime
        self.max_idle_time = max_idle_time
        self._idle: list[PooledConnection] = []
        self._closed = False

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    def _expired(self, conn: PooledConnection, now: float) -> bool:
        if self.max_lifetime and now - conn.created > self.max_lifetime:
            return True
        return bool(self.max_idle_time and now - conn.last_used > self.max_idle_time)

    async def acquire(self, timeout: float | None = None) -> PooledConnection:
        """Take a connection, opening one when no idle connection is usable.

        Waiting for a free slot is the only point where a caller can time
        out or be cancelled.

        Raises:
            TimeoutError: No slot freed up within ``timeout`` seconds.
        """
        if self._closed:
            raise RowkitError("connection pool is closed")

        if self._semaphore is not None:
            await asyncio.wait_for(self._semaphore.acquire(), timeout)

        try:
            now = time.monotonic()
            while self._idle:
                conn = self._idle.pop()
                if not self._expired(conn, now):
                    return conn
                logger.debug("closing expired connection")
                await conn.raw.close()
            return PooledConnection(await self._connect())
        except BaseException:
            if self._semaphore is not None:
                self._semaphore.release()
            raise

    async def release(self, conn: PooledConnection, *, discard: bool = False) -> None:
        """Give a connection back; ``discard`` closes it instead of keeping it."""
        try:
            now = time.monotonic()
            if discard or self._closed or len(self._idle) >= self.max_idle or self._expired(conn, now):
                await conn.raw.close()
            else:
                conn.last_used = now
                self._idle.append(conn)
        finally:
            if self._semaphore is not None:
                self._semaphore.release()

    @asynccontextmanager
    async def connection(self, timeout: float | None = None) -> AsyncIterator[PooledConnection]:
        conn = await self.acquire(timeout)
        try:
            yield conn
        finally:
            await self.release(conn)

    async def close(self) -> None:
        """Close every idle connection; leased ones close when released."""
        self._closed = True
        idle, self._idle = self._idle, []
        for conn in idle:
            await conn.raw.close()
