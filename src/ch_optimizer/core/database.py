# src/ch_optimizer/core/database.py
"""Connection management for the ClickHouse server.

The engine is built with NullPool: every connection handed out is a fresh
native-protocol connection and closing it really closes the socket. A
connection lives for exactly one scheduler cycle.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Self

from sqlalchemy import Connection, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from ch_optimizer.core.config import redact_dsn
from ch_optimizer.core.logging import get_logger

logger = get_logger(__name__)

PING_QUERY = "SELECT 1"


class ClickHouseConnector:
    """Hands out one unpooled connection per cycle.

    Example:
        connector = ClickHouseConnector.from_dsn(settings.clickhouse.server_dsn)
        with connector.connection() as conn:
            connector.ping(conn)
            ...
        connector.close()
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_dsn(cls, dsn: str) -> Self:
        """Create a connector for a SQLAlchemy DSN.

        The engine is lazy: nothing is dialed until the first connection.
        """
        engine = create_engine(dsn, poolclass=NullPool)
        logger.debug("ClickHouse engine created", dsn=redact_dsn(dsn))
        return cls(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def open(self) -> Connection:
        """Open a new connection. The caller owns and must close it."""
        return self._engine.connect()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Yield a fresh connection that is closed on exit."""
        conn = self.open()
        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def ping(conn: Connection) -> None:
        """Round-trip a trivial query; raises the driver error on failure.

        The native driver dials lazily, so this is where an unreachable
        server first shows up.
        """
        conn.execute(text(PING_QUERY)).scalar()

    def close(self) -> None:
        """Dispose of the engine."""
        self._engine.dispose()
