"""Exceptions raised by the sync engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.startup_config import ConfigValidationError

if TYPE_CHECKING:
    from replication.models import BatchFailure


class SyncError(RuntimeError):
    """Base class for errors that abort a sync run."""


class PreconditionError(SyncError):
    """Raised before any destination mutation when a run cannot start."""


class ConnectionStringError(PreconditionError, ConfigValidationError):
    """Raised for a connection string without scheme or host."""


class VersionMismatchError(PreconditionError):
    """Source and destination report different major server versions."""

    def __init__(self, source_major: int, destination_major: int) -> None:
        super().__init__(
            f"Incompatible server versions: source major {source_major}, "
            f"destination major {destination_major}"
        )
        self.source_major = source_major
        self.destination_major = destination_major


class MarkerResidueError(PreconditionError):
    """The source still carries marker labels from an interrupted run."""

    def __init__(self, labels: list[str]) -> None:
        super().__init__(
            "Source has marker labels left by an earlier run: "
            + ", ".join(labels)
            + ". Remove them or pass --remove-marker-residue."
        )
        self.labels = labels


class BatchWriteError(SyncError):
    """One or more write batches failed during a copy phase."""

    def __init__(self, phase: str, failures: list["BatchFailure"]) -> None:
        entities = sum(len(f.entities) for f in failures)
        super().__init__(
            f"{len(failures)} batch(es) failed during {phase} "
            f"({entities} entities not copied)"
        )
        self.phase = phase
        self.failures = failures
