"""Tests for GraphSession against a stubbed neo4j driver."""

import unittest
from unittest.mock import patch

from neo4j.exceptions import ServiceUnavailable

from core.startup_config import ConnectionTarget
from replication.dialect import ModernDialect, ServerVersion, ShowDialect
from replication.errors import ConnectionStringError
from replication.models import WriteOperation
from replication.session import SERVER_COMPONENTS_QUERY, GraphSession


class _Record:
    def __init__(self, data):
        self._data = data

    def data(self):
        return dict(self._data)


class _Result:
    def __init__(self, rows):
        self._rows = list(rows)
        self.consumed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self._rows:
            yield _Record(row)

    async def consume(self):
        self.consumed = True


class _Transaction:
    def __init__(self, driver):
        self.driver = driver
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if not self.committed:
            self.rolled_back = True
        return False

    async def run(self, query, parameters=None):
        if query in self.driver.failing_queries:
            raise RuntimeError(f"statement failed: {query}")
        self.driver.tx_queries.append((query, parameters))
        return _Result([])

    async def commit(self):
        self.committed = True


class _Session:
    def __init__(self, driver, database):
        self.driver = driver
        self.database = database

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def run(self, query, parameters=None):
        self.driver.queries.append((query, parameters, self.database))
        return _Result(self.driver.responses.get(query, []))

    async def begin_transaction(self):
        tx = _Transaction(self.driver)
        self.driver.transactions.append(tx)
        return tx


class _Driver:
    def __init__(self, failures_before_connect=0, version="5.13.0"):
        self.failures_before_connect = failures_before_connect
        self.connect_attempts = 0
        self.closed = False
        self.queries = []
        self.tx_queries = []
        self.transactions = []
        self.failing_queries = set()
        self.responses = {
            SERVER_COMPONENTS_QUERY: [
                {"name": "Neo4j Kernel", "versions": [version], "edition": "enterprise"}
            ]
        }

    async def verify_connectivity(self):
        self.connect_attempts += 1
        if self.connect_attempts <= self.failures_before_connect:
            raise ServiceUnavailable("connection refused")

    async def close(self):
        self.closed = True

    def session(self, database=None):
        return _Session(self, database)


def _session(database=None) -> GraphSession:
    return GraphSession(
        ConnectionTarget(uri="bolt://db:7687", auth=("neo4j", "secret")),
        database=database,
        name="source",
    )


class TestGraphSessionOpen(unittest.IsolatedAsyncioTestCase):
    async def test_open_resolves_version_and_dialect(self) -> None:
        driver = _Driver(version="5.13.0")
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=driver) as factory:
            session = await _session().open(retries=1, retry_delay=0)

        factory.assert_called_once_with("bolt://db:7687", auth=("neo4j", "secret"))
        self.assertEqual(session.version, ServerVersion(5, 13, 0))
        self.assertEqual(session.version.edition, "enterprise")
        self.assertIsInstance(session.dialect, ModernDialect)
        self.assertTrue(session.is_open)

        await session.close()
        self.assertTrue(driver.closed)
        self.assertFalse(session.is_open)

    async def test_4x_server_gets_show_dialect(self) -> None:
        driver = _Driver(version="4.4.12")
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=driver):
            session = await _session().open(retries=1, retry_delay=0)
        self.assertIs(type(session.dialect), ShowDialect)

    async def test_connectivity_is_retried(self) -> None:
        driver = _Driver(failures_before_connect=2)
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=driver):
            await _session().open(retries=3, retry_delay=0)
        self.assertEqual(driver.connect_attempts, 3)

    async def test_unreachable_server_raises_connection_error(self) -> None:
        driver = _Driver(failures_before_connect=10)
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=driver):
            with self.assertRaises(ConnectionError):
                await _session().open(retries=2, retry_delay=0)
        self.assertEqual(driver.connect_attempts, 2)
        self.assertTrue(driver.closed)

    async def test_database_name_is_passed_to_sessions(self) -> None:
        driver = _Driver()
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=driver):
            session = await _session(database="graph").open(retries=1, retry_delay=0)
        self.assertEqual(driver.queries[0][2], "graph")


class TestGraphSessionStatements(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.driver = _Driver()
        with patch("replication.session.AsyncGraphDatabase.driver", return_value=self.driver):
            self.session = await _session().open(retries=1, retry_delay=0)

    async def test_stream_calls_back_per_row(self) -> None:
        self.driver.responses["MATCH (n) RETURN n.x AS x"] = [{"x": 1}, {"x": 2}]
        seen = []
        count = await self.session.stream("MATCH (n) RETURN n.x AS x", {"limit": 2}, seen.append)
        self.assertEqual(count, 2)
        self.assertEqual(seen, [{"x": 1}, {"x": 2}])
        self.assertEqual(self.driver.queries[-1][1], {"limit": 2})

    async def test_write_transaction_commits_all_operations(self) -> None:
        ops = [WriteOperation("CREATE (a)", {"p": 1}), WriteOperation("CREATE (b)", {"p": 2})]
        await self.session.write_transaction(ops)
        self.assertEqual(self.driver.tx_queries, [("CREATE (a)", {"p": 1}), ("CREATE (b)", {"p": 2})])
        self.assertTrue(self.driver.transactions[-1].committed)

    async def test_failing_operation_rolls_back_the_batch(self) -> None:
        self.driver.failing_queries.add("CREATE (b)")
        ops = [WriteOperation("CREATE (a)"), WriteOperation("CREATE (b)")]
        with self.assertRaises(RuntimeError):
            await self.session.write_transaction(ops)
        tx = self.driver.transactions[-1]
        self.assertFalse(tx.committed)
        self.assertTrue(tx.rolled_back)

    async def test_statements_need_an_open_session(self) -> None:
        await self.session.close()
        with self.assertRaises(RuntimeError):
            await self.session.run("RETURN 1")


class TestConnectionString(unittest.TestCase):
    def test_from_connection_string_splits_credentials(self) -> None:
        session = GraphSession.from_connection_string("neo4j://u:p@host:7687", name="destination")
        self.assertEqual(session.target.uri, "neo4j://host:7687")
        self.assertEqual(session.target.auth, ("u", "p"))

    def test_malformed_connection_string(self) -> None:
        with self.assertRaises(ConnectionStringError) as ctx:
            GraphSession.from_connection_string("not a uri", name="source")
        self.assertIn("source", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
