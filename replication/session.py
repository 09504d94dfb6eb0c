"""
Neo4j session wrapper used by the sync engine.

Wraps an async driver for one database endpoint: connectivity check at
open, version probe and dialect selection, streamed reads with a per-row
callback, and explicit write transactions for batches.
"""

import logging
from typing import Any, Iterable, Optional

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import ServiceUnavailable, SessionExpired
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from core.startup_config import (
    ConfigValidationError,
    ConnectionTarget,
    parse_connection_string,
)
from replication.config import CLONE_CONNECTION_RETRIES, CLONE_CONNECTION_RETRY_DELAY
from replication.dialect import Dialect, ServerVersion, resolve_dialect
from replication.errors import ConnectionStringError
from replication.models import WriteOperation
from replication.pagination import RowCallback

logger = logging.getLogger(__name__)

SERVER_COMPONENTS_QUERY = (
    "CALL dbms.components() YIELD name, versions, edition "
    "RETURN name, versions, edition"
)


class GraphSession:
    """One endpoint (source or destination) of a sync run."""

    def __init__(
        self,
        target: ConnectionTarget,
        database: Optional[str] = None,
        name: str = "graph",
    ) -> None:
        self.target = target
        self.database = database
        self.name = name
        self.version: Optional[ServerVersion] = None
        self.dialect: Optional[Dialect] = None
        self._driver: Optional[AsyncDriver] = None

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        database: Optional[str] = None,
        name: str = "graph",
    ) -> "GraphSession":
        try:
            target = parse_connection_string(connection_string)
        except ConfigValidationError as exc:
            raise ConnectionStringError(f"{name}: {exc}") from exc
        return cls(target, database=database, name=name)

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    async def open(
        self,
        retries: int = CLONE_CONNECTION_RETRIES,
        retry_delay: float = CLONE_CONNECTION_RETRY_DELAY,
    ) -> "GraphSession":
        """Create the driver, verify connectivity and resolve the dialect.

        Raises:
            ConnectionError: If the server is unreachable after ``retries``.
        """
        logger.info("Connecting to %s database at %s...", self.name, self.target.uri)
        driver = AsyncGraphDatabase.driver(self.target.uri, auth=self.target.auth)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, retries)),
                wait=wait_fixed(retry_delay),
                retry=retry_if_exception_type((ServiceUnavailable, SessionExpired, OSError)),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    await driver.verify_connectivity()
        except Exception as exc:
            await driver.close()
            raise ConnectionError(
                f"Failed to connect to {self.name} database at {self.target.uri}: {exc}"
            ) from exc

        self._driver = driver
        self.version = await self.server_version()
        self.dialect = resolve_dialect(self.version)
        logger.info(
            "Connected to %s database at %s (server %s, dialect %s)",
            self.name,
            self.target.uri,
            self.version,
            self.dialect.name,
        )
        return self

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.debug("Closed %s database connection", self.name)

    async def __aenter__(self) -> "GraphSession":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _session(self):
        if self._driver is None:
            raise RuntimeError(f"{self.name} session is not open")
        if self.database:
            return self._driver.session(database=self.database)
        return self._driver.session()

    async def stream(
        self,
        query: str,
        parameters: Optional[dict[str, Any]],
        on_row: RowCallback,
    ) -> int:
        """Run ``query`` in an auto-commit transaction, calling ``on_row`` per record."""
        count = 0
        async with self._session() as session:
            result = await session.run(query, parameters or {})
            async for record in result:
                count += 1
                on_row(record.data())
        return count

    async def run(
        self, query: str, parameters: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        await self.stream(query, parameters, rows.append)
        return rows

    async def write_transaction(self, operations: Iterable[WriteOperation]) -> None:
        """Execute all operations atomically in one explicit transaction.

        Uses an unmanaged transaction so the driver does not retry it.
        """
        async with self._session() as session:
            async with await session.begin_transaction() as tx:
                for operation in operations:
                    result = await tx.run(operation.query, operation.parameters)
                    await result.consume()
                await tx.commit()

    async def server_version(self) -> ServerVersion:
        rows = await self.run(SERVER_COMPONENTS_QUERY)
        for row in rows:
            versions = row.get("versions") or []
            if versions and "kernel" in str(row.get("name", "")).lower():
                return ServerVersion.parse(versions[0], edition=row.get("edition") or "")
        if rows and rows[0].get("versions"):
            return ServerVersion.parse(
                rows[0]["versions"][0], edition=rows[0].get("edition") or ""
            )
        raise RuntimeError(f"{self.name} server did not report a version")

    def __repr__(self) -> str:
        return f"GraphSession(name={self.name!r}, uri={self.target.uri!r})"
