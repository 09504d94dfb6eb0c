"""Live sync between two real Neo4j servers.

Skipped unless ``CLONE_TEST_SOURCE_URI`` and ``CLONE_TEST_DESTINATION_URI``
point at two disposable databases. The destination is wiped.
"""

import os
import unittest

from replication.config import SyncSettings
from replication.orchestrator import sync_graphs
from replication.session import GraphSession

SOURCE_URI = os.getenv("CLONE_TEST_SOURCE_URI")
DESTINATION_URI = os.getenv("CLONE_TEST_DESTINATION_URI")


@unittest.skipUnless(
    SOURCE_URI and DESTINATION_URI,
    "CLONE_TEST_SOURCE_URI / CLONE_TEST_DESTINATION_URI not set",
)
class TestLiveSync(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.source = await GraphSession.from_connection_string(SOURCE_URI, name="source").open()
        await self.source.run("MATCH (n) DETACH DELETE n")
        await self.source.run(
            "CREATE (a:Person {name: 'a'})-[:KNOWS {since: 2019}]->(b:Person {name: 'b'}), "
            "(:City {name: 'c'})"
        )

    async def asyncTearDown(self) -> None:
        await self.source.close()

    async def test_clone_copies_graph(self) -> None:
        settings = SyncSettings(on_batch_error="abort", batch_size=2, page_size=2, report_dir=None)
        stats = await sync_graphs(SOURCE_URI, DESTINATION_URI, settings)
        self.assertEqual(stats.nodes_written, 3)
        self.assertEqual(stats.relationships_written, 1)

        async with GraphSession.from_connection_string(DESTINATION_URI, name="check") as dest:
            rows = await dest.run(
                "MATCH (a:Person)-[r:KNOWS]->(b:Person) "
                "RETURN a.name AS a, b.name AS b, r.since AS since, keys(a) AS keys"
            )
            labels = await dest.run("CALL db.labels() YIELD label RETURN label")

        self.assertEqual(rows, [{"a": "a", "b": "b", "since": 2019, "keys": ["name"]}])
        self.assertFalse(any(r["label"].startswith("CypherCloneMarker_") for r in labels))


if __name__ == "__main__":
    unittest.main()
