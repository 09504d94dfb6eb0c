"""
Data models for the graph clone.

Rows read from the source are turned into these dataclasses before being
translated into destination write operations.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

# Source-native identity: an int from ``id()`` or a string from ``elementId()``.
Identity = Any


@dataclass(frozen=True)
class SourceNode:
    """A node read from the source database."""

    identity: Identity
    labels: tuple[str, ...] = ()
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SourceNode":
        return cls(
            identity=row["identity"],
            labels=tuple(row.get("labels") or ()),
            properties=dict(row.get("properties") or {}),
        )


@dataclass(frozen=True)
class SourceRelationship:
    """A relationship read from the source database."""

    identity: Identity
    type: str
    start: Identity
    end: Identity
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SourceRelationship":
        return cls(
            identity=row["identity"],
            type=row["type"],
            start=row["start_id"],
            end=row["end_id"],
            properties=dict(row.get("properties") or {}),
        )


@dataclass(frozen=True)
class WriteOperation:
    """One parameterized statement destined for a write batch."""

    query: str
    parameters: dict[str, Any] = field(default_factory=dict)
    kind: str = "statement"  # node, relationship, schema, statement
    source_identity: Optional[Identity] = None


@dataclass
class BatchFailure:
    """A batch whose transaction failed; none of its operations were applied."""

    batcher: str
    operations: int
    error: str
    entities: list[tuple[str, Identity]] = field(default_factory=list)

    @classmethod
    def from_batch(
        cls, batcher: str, batch: list[WriteOperation], error: BaseException
    ) -> "BatchFailure":
        return cls(
            batcher=batcher,
            operations=len(batch),
            error=f"{type(error).__name__}: {error}",
            entities=[
                (op.kind, op.source_identity)
                for op in batch
                if op.source_identity is not None
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batcher": self.batcher,
            "operations": self.operations,
            "error": self.error,
            "entities": [list(entity) for entity in self.entities],
        }


@dataclass
class SyncStats:
    """Statistics for one sync run."""

    destination_nodes_deleted: int = 0
    destination_schema_dropped: int = 0
    nodes_queued: int = 0
    nodes_written: int = 0
    relationships_queued: int = 0
    relationships_written: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    markers_removed: int = 0
    schema_copied: int = 0
    schema_skipped: int = 0
    elapsed_seconds: float = 0.0
    failures: list[BatchFailure] = field(default_factory=list)

    def entities_failed(self) -> int:
        return sum(len(f.entities) for f in self.failures)

    def to_report(self) -> dict[str, Any]:
        return {
            "destination_nodes_deleted": self.destination_nodes_deleted,
            "destination_schema_dropped": self.destination_schema_dropped,
            "nodes_queued": self.nodes_queued,
            "nodes_written": self.nodes_written,
            "relationships_queued": self.relationships_queued,
            "relationships_written": self.relationships_written,
            "batches_sent": self.batches_sent,
            "batches_failed": self.batches_failed,
            "entities_failed": self.entities_failed(),
            "markers_removed": self.markers_removed,
            "schema_copied": self.schema_copied,
            "schema_skipped": self.schema_skipped,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }

    def __str__(self) -> str:
        return (
            f"SyncStats(nodes={self.nodes_written}/{self.nodes_queued}, "
            f"relationships={self.relationships_written}/{self.relationships_queued}, "
            f"batches={self.batches_sent}, failed_batches={self.batches_failed}, "
            f"schema={self.schema_copied})"
        )
