"""
Replication module: online copy of one property-graph database into another.

Public API:
    - sync_graphs: Open both endpoints and run the full sync
    - SyncOrchestrator: Phase sequence over two open sessions
    - GraphSession: Async neo4j endpoint with dialect resolution
    - WriteBatcher: Single in-flight transactional write batching
    - paginate: Skip/limit pagination with a per-row callback
    - CorrelationMarker: Run-scoped marker label/property protocol
    - resolve_dialect: Pick statement rules for a server version
"""

from replication.batcher import WriteBatcher, progress_reporter
from replication.config import SyncSettings
from replication.dialect import (
    Dialect,
    ModernDialect,
    ProcedureDialect,
    SchemaEntry,
    ServerVersion,
    ShowDialect,
    resolve_dialect,
)
from replication.errors import (
    BatchWriteError,
    ConnectionStringError,
    MarkerResidueError,
    PreconditionError,
    SyncError,
    VersionMismatchError,
)
from replication.marker import CorrelationMarker
from replication.models import (
    BatchFailure,
    SourceNode,
    SourceRelationship,
    SyncStats,
    WriteOperation,
)
from replication.orchestrator import SyncOrchestrator, SyncPhase, sync_graphs
from replication.pagination import paginate
from replication.session import GraphSession

__all__ = [
    # Orchestration
    "sync_graphs",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncSettings",
    # Engine
    "WriteBatcher",
    "progress_reporter",
    "paginate",
    "CorrelationMarker",
    # Endpoints and dialects
    "GraphSession",
    "Dialect",
    "ProcedureDialect",
    "ShowDialect",
    "ModernDialect",
    "SchemaEntry",
    "ServerVersion",
    "resolve_dialect",
    # Data models
    "BatchFailure",
    "SourceNode",
    "SourceRelationship",
    "SyncStats",
    "WriteOperation",
    # Errors
    "SyncError",
    "PreconditionError",
    "ConnectionStringError",
    "VersionMismatchError",
    "MarkerResidueError",
    "BatchWriteError",
]
