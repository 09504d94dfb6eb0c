"""
Sync orchestrator: full online copy of one graph database into another.

Phases run strictly in order and every statement error aborts the run,
leaving the destination as it is:

    0. Preflight          version compatibility, marker residue on the source
    1. WipeDestination    delete all destination data, drop its schema
    2. PrepareMarker      create the marker uniqueness constraint
    3. CopyNodes          self-draining tagged scan of source nodes
    4. CopyRelationships  ordered scan of source relationships
    5. CleanupMarker      strip the marker from both sides, drop constraint
    6. CopySchema         recreate source indexes/constraints on destination

Writes of phases 3 and 4 go through a ``WriteBatcher`` that is fully
drained before the next phase starts, so every relationship write sees
all of its endpoint nodes.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from core.run_artifacts import write_run_report
from core.structured_logging import phase_scope
from replication.batcher import WriteBatcher, progress_reporter
from replication.config import SyncSettings
from replication.dialect import list_constraints, list_indexes
from replication.errors import BatchWriteError, MarkerResidueError, VersionMismatchError
from replication.marker import (
    LIST_LABELS_QUERY,
    CorrelationMarker,
    is_marker_label,
    marker_label_in_use_query,
    residue_cleanup_query,
)
from replication.models import (
    SourceNode,
    SourceRelationship,
    SyncStats,
    WriteOperation,
)
from replication.pagination import paginate
from replication.session import GraphSession

logger = logging.getLogger(__name__)

WIPE_DESTINATION_QUERY = (
    "MATCH (node)\n"
    "WITH node LIMIT $limit\n"
    "DETACH DELETE node\n"
    "RETURN 1 AS deleted"
)


class SyncPhase(str, Enum):
    PREFLIGHT = "Preflight"
    WIPE_DESTINATION = "WipeDestination"
    PREPARE_MARKER = "PrepareMarker"
    COPY_NODES = "CopyNodes"
    COPY_RELATIONSHIPS = "CopyRelationships"
    CLEANUP_MARKER = "CleanupMarker"
    COPY_SCHEMA = "CopySchema"


class SyncOrchestrator:
    """Runs the phase sequence between two open sessions."""

    def __init__(
        self,
        source: GraphSession,
        destination: GraphSession,
        settings: Optional[SyncSettings] = None,
        marker: Optional[CorrelationMarker] = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.settings = settings or SyncSettings()
        self.marker = marker or CorrelationMarker.generate()
        self.stats = SyncStats()
        self.phase: Optional[SyncPhase] = None
        self.completed_phases: list[SyncPhase] = []

    async def run(self) -> SyncStats:
        """Run every phase; returns stats on success, raises on the first error."""
        started = time.monotonic()
        logger.info(
            "Starting sync %s -> %s (marker %s)",
            self.source.target.uri,
            self.destination.target.uri,
            self.marker.label,
        )
        steps: list[tuple[SyncPhase, Callable[[], Any]]] = [
            (SyncPhase.PREFLIGHT, self.preflight),
            (SyncPhase.WIPE_DESTINATION, self.wipe_destination),
            (SyncPhase.PREPARE_MARKER, self.prepare_marker),
            (SyncPhase.COPY_NODES, self.copy_nodes),
            (SyncPhase.COPY_RELATIONSHIPS, self.copy_relationships),
            (SyncPhase.CLEANUP_MARKER, self.cleanup_marker),
            (SyncPhase.COPY_SCHEMA, self.copy_schema),
        ]
        try:
            for phase, step in steps:
                self.phase = phase
                with phase_scope(phase.value):
                    await step()
                self.completed_phases.append(phase)
        finally:
            self.stats.elapsed_seconds = time.monotonic() - started
        logger.info(
            "Sync completed in %d seconds: %s",
            round(self.stats.elapsed_seconds),
            self.stats,
        )
        return self.stats

    # -- phases --------------------------------------------------------------

    async def preflight(self) -> None:
        source_version = self.source.version
        destination_version = self.destination.version
        if source_version is None or destination_version is None:
            raise RuntimeError("Sessions must be opened before syncing")
        if source_version.major != destination_version.major:
            raise VersionMismatchError(source_version.major, destination_version.major)
        logger.info(
            "Server versions: source %s, destination %s",
            source_version,
            destination_version,
        )

        residue = await self._marker_residue()
        if not residue:
            return
        if not self.settings.remove_marker_residue:
            raise MarkerResidueError(residue)
        for label in residue:
            cleaned = await paginate(
                self.source, residue_cleanup_query(label), self.settings.wipe_page_size
            )
            logger.warning("Removed residue label %s from %d source nodes", label, cleaned)

    async def wipe_destination(self) -> None:
        deleted = await paginate(
            self.destination, WIPE_DESTINATION_QUERY, self.settings.wipe_page_size
        )
        self.stats.destination_nodes_deleted = deleted
        logger.info("Destination database emptied (%d nodes deleted)", deleted)

        for constraint in await list_constraints(self.destination):
            await self.destination.run(constraint.drop_statement)
            self.stats.destination_schema_dropped += 1
            logger.debug("Dropped constraint %s", constraint.name)

        # Constraint-backed indexes went away with their constraints.
        for index in await list_indexes(self.destination):
            if index.owned_by_constraint or index.token_lookup:
                continue
            await self.destination.run(index.drop_statement)
            self.stats.destination_schema_dropped += 1
            logger.debug("Dropped index %s", index.name)

        logger.info(
            "Dropped %d destination indexes/constraints",
            self.stats.destination_schema_dropped,
        )

    async def prepare_marker(self) -> None:
        await self.destination.run(self.marker.create_constraint(self.destination.dialect))
        logger.info("Prepared UNIQUE constraint %s", self.marker.constraint_name)

    async def copy_nodes(self) -> None:
        batcher = WriteBatcher(
            self.destination.write_transaction, self.settings.batch_size, name="nodes"
        )

        def on_row(row: dict[str, Any]) -> None:
            node = SourceNode.from_row(row)
            batcher.add(self.marker.create_node_operation(node))
            self.stats.nodes_queued += 1

        await self._copy(
            batcher, self.marker.node_scan_query(self.source.dialect), on_row
        )
        self.stats.nodes_written += batcher.operations_written
        logger.info(
            "Copied %d/%d nodes", batcher.operations_written, self.stats.nodes_queued
        )

    async def copy_relationships(self) -> None:
        batcher = WriteBatcher(
            self.destination.write_transaction,
            self.settings.batch_size,
            name="relationships",
        )

        def on_row(row: dict[str, Any]) -> None:
            rel = SourceRelationship.from_row(row)
            batcher.add(self.marker.create_relationship_operation(rel))
            self.stats.relationships_queued += 1

        await self._copy(
            batcher, self.marker.relationship_scan_query(self.source.dialect), on_row
        )
        self.stats.relationships_written += batcher.operations_written
        logger.info(
            "Copied %d/%d relationships",
            batcher.operations_written,
            self.stats.relationships_queued,
        )

    async def cleanup_marker(self) -> None:
        page_size = self.settings.wipe_page_size
        self.stats.markers_removed = await paginate(
            self.destination, self.marker.destination_cleanup_query(), page_size
        )
        source_cleaned = await paginate(
            self.source, self.marker.source_cleanup_query(), page_size
        )
        logger.info(
            "Removed marker from %d destination and %d source nodes",
            self.stats.markers_removed,
            source_cleaned,
        )
        await self.destination.run(self.marker.drop_constraint(self.destination.dialect))
        logger.info("Removed UNIQUE constraint %s", self.marker.constraint_name)

    async def copy_schema(self) -> None:
        entries = await list_indexes(self.source) + await list_constraints(self.source)
        operations: list[WriteOperation] = []
        for entry in entries:
            if not entry.replicable:
                self.stats.schema_skipped += 1
                logger.debug("Skipping %s %s", entry.kind, entry.name)
                continue
            operations.append(WriteOperation(query=entry.create_statement, kind="schema"))

        if operations:
            await self.destination.write_transaction(operations)
        self.stats.schema_copied = len(operations)
        logger.info(
            "Synchronized %d indexes/constraints (%d skipped)",
            self.stats.schema_copied,
            self.stats.schema_skipped,
        )

    # -- helpers -------------------------------------------------------------

    async def _marker_residue(self) -> list[str]:
        """Marker labels of earlier runs still carried by source nodes.

        ``db.labels()`` on 3.x and early 4.x also lists label tokens no node
        uses any more, so each candidate is checked for a carrying node.
        """
        rows = await self.source.run(LIST_LABELS_QUERY)
        candidates = sorted(
            row["label"]
            for row in rows
            if is_marker_label(row["label"]) and row["label"] != self.marker.label
        )
        residue = []
        for label in candidates:
            if await self.source.run(marker_label_in_use_query(label)):
                residue.append(label)
            else:
                logger.debug("Ignoring unused label token %s", label)
        return residue

    async def _copy(
        self,
        batcher: WriteBatcher,
        scan_query: str,
        on_row: Callable[[dict[str, Any]], None],
    ) -> None:
        try:
            async with progress_reporter(batcher, self.settings.progress_interval):
                await paginate(self.source, scan_query, self.settings.page_size, on_row)
                logger.info("Queued all %s writes, draining %d", batcher.name, batcher.size)
                await batcher.finish()
        except BaseException:
            await batcher.cancel()
            raise
        finally:
            self.stats.batches_sent += batcher.batches_sent
            self.stats.batches_failed += len(batcher.failures)
            self.stats.failures.extend(batcher.failures)

        if not batcher.failures:
            return
        for failure in batcher.failures:
            logger.error(
                "Failed %s batch (%d operations): %s",
                failure.batcher,
                failure.operations,
                failure.error,
            )
        if self.settings.on_batch_error == "abort":
            raise BatchWriteError(self.phase.value, batcher.failures)
        logger.warning(
            "Continuing after %d failed %s batches",
            len(batcher.failures),
            batcher.name,
        )

    def write_report(self, status: str, error: Optional[BaseException] = None) -> Optional[str]:
        """Write the JSON run report if a report directory is configured."""
        if not self.settings.report_dir:
            return None
        report: dict[str, Any] = {
            "status": status,
            "source": self.source.target.uri,
            "destination": self.destination.target.uri,
            "marker_label": self.marker.label,
            "completed_phases": [phase.value for phase in self.completed_phases],
            "failed_phase": (
                self.phase.value if error is not None and self.phase is not None else None
            ),
            "error": f"{type(error).__name__}: {error}" if error is not None else None,
            "stats": self.stats.to_report(),
        }
        path = write_run_report(
            report,
            run_id=self.marker.token,
            output_dir=self.settings.report_dir,
            failures=[failure.to_dict() for failure in self.stats.failures],
        )
        logger.info("Run report written to %s", path)
        return path


async def sync_graphs(
    source_uri: str,
    destination_uri: str,
    settings: Optional[SyncSettings] = None,
    marker: Optional[CorrelationMarker] = None,
) -> SyncStats:
    """Open both endpoints, run the full sync and close them again."""
    settings = settings or SyncSettings()
    source = GraphSession.from_connection_string(
        source_uri, database=settings.source_database, name="source"
    )
    destination = GraphSession.from_connection_string(
        destination_uri, database=settings.destination_database, name="destination"
    )
    try:
        for session in (source, destination):
            await session.open(
                retries=settings.connection_retries,
                retry_delay=settings.connection_retry_delay,
            )
        orchestrator = SyncOrchestrator(source, destination, settings, marker=marker)
        try:
            stats = await orchestrator.run()
        except Exception as exc:
            orchestrator.write_report("failed", exc)
            raise
        orchestrator.write_report("success")
        return stats
    finally:
        await source.close()
        await destination.close()
