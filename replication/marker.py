"""
Correlation protocol between source and destination identities.

The destination assigns its own identities to created nodes, so each copied
node is tagged with a run-scoped marker label plus a marker property holding
its source identity. Relationship writes then resolve both endpoints through
that property (backed by a uniqueness constraint) instead of through native
identities. Once everything is copied the marker is stripped from every
node and the constraint dropped.

The marker names embed a random token generated per sync run, so two runs
never share coordination state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from core.structured_logging import new_run_token
from replication.dialect import Dialect, quote_identifier
from replication.models import SourceNode, SourceRelationship, WriteOperation

MARKER_LABEL_PREFIX = "CypherCloneMarker_"
MARKER_PROPERTY_PREFIX = "cypher_clone_id_"
MARKER_CONSTRAINT_PREFIX = "cypher_clone_marker_"

LIST_LABELS_QUERY = "CALL db.labels() YIELD label RETURN label"

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class CorrelationMarker:
    """Marker label/property pair for a single sync run."""

    token: str

    def __post_init__(self) -> None:
        if not _TOKEN_RE.match(self.token):
            raise ValueError(f"Marker token must be alphanumeric, got {self.token!r}")

    @classmethod
    def generate(cls, token: Optional[str] = None) -> "CorrelationMarker":
        return cls(token=token or new_run_token())

    @property
    def label(self) -> str:
        return f"{MARKER_LABEL_PREFIX}{self.token}"

    @property
    def property_name(self) -> str:
        return f"{MARKER_PROPERTY_PREFIX}{self.token}"

    @property
    def constraint_name(self) -> str:
        return f"{MARKER_CONSTRAINT_PREFIX}{self.token}"

    # -- constraint ----------------------------------------------------------

    def create_constraint(self, dialect: Dialect) -> str:
        return dialect.marker_constraint_create(self)

    def drop_constraint(self, dialect: Dialect) -> str:
        return dialect.marker_constraint_drop(self)

    # -- source scans --------------------------------------------------------

    def node_scan_query(self, dialect: Dialect) -> str:
        """Self-draining node scan: every returned node is tagged on the source.

        Tagged nodes no longer match, so pages only ever see untagged nodes
        and ``$skip`` is unused.
        """
        label = quote_identifier(self.label)
        return (
            "MATCH (node)\n"
            f"WHERE NOT node:{label}\n"
            "WITH node LIMIT $limit\n"
            "WITH node, labels(node) AS labels\n"
            f"SET node:{label}\n"
            f"RETURN {dialect.identity('node')} AS identity, labels, "
            "properties(node) AS properties"
        )

    def relationship_scan_query(self, dialect: Dialect) -> str:
        """Relationship page ordered by source identity."""
        return (
            "MATCH ()-[rel]->()\n"
            f"RETURN {dialect.identity('rel')} AS identity, type(rel) AS type, "
            f"{dialect.identity('startNode(rel)')} AS start_id, "
            f"{dialect.identity('endNode(rel)')} AS end_id, "
            "properties(rel) AS properties\n"
            "ORDER BY identity\n"
            "SKIP $skip LIMIT $limit"
        )

    # -- destination writes --------------------------------------------------

    def create_node_operation(self, node: SourceNode) -> WriteOperation:
        labels = [self.label] + [
            label for label in node.labels if not label.startswith(MARKER_LABEL_PREFIX)
        ]
        label_text = ":".join(quote_identifier(label) for label in labels)
        properties = dict(node.properties)
        properties[self.property_name] = node.identity
        return WriteOperation(
            query=f"CREATE (n:{label_text}) SET n = $properties",
            parameters={"properties": properties},
            kind="node",
            source_identity=node.identity,
        )

    def create_relationship_operation(self, rel: SourceRelationship) -> WriteOperation:
        label = quote_identifier(self.label)
        prop = quote_identifier(self.property_name)
        query = (
            f"MATCH (src:{label} {{{prop}: $start_id}}), (dst:{label} {{{prop}: $end_id}})\n"
            f"CREATE (src)-[r:{quote_identifier(rel.type)}]->(dst)\n"
            "SET r = $properties"
        )
        return WriteOperation(
            query=query,
            parameters={
                "start_id": rel.start,
                "end_id": rel.end,
                "properties": dict(rel.properties),
            },
            kind="relationship",
            source_identity=rel.identity,
        )

    # -- cleanup -------------------------------------------------------------

    def destination_cleanup_query(self) -> str:
        """Strip label and property, one row per cleaned node."""
        label = quote_identifier(self.label)
        return (
            f"MATCH (node:{label})\n"
            "WITH node LIMIT $limit\n"
            f"REMOVE node:{label}\n"
            f"REMOVE node.{quote_identifier(self.property_name)}\n"
            "RETURN 1 AS cleaned"
        )

    def source_cleanup_query(self) -> str:
        return residue_cleanup_query(self.label)


def is_marker_label(label: str) -> bool:
    return label.startswith(MARKER_LABEL_PREFIX)


def residue_cleanup_query(label: str) -> str:
    """Remove a marker label from nodes, one row per cleaned node."""
    quoted = quote_identifier(label)
    return (
        f"MATCH (node:{quoted})\n"
        "WITH node LIMIT $limit\n"
        f"REMOVE node:{quoted}\n"
        "RETURN 1 AS cleaned"
    )


def marker_label_in_use_query(label: str) -> str:
    """One row if any node still carries ``label``, none otherwise."""
    return f"MATCH (node:{quote_identifier(label)})\nRETURN 1 AS found\nLIMIT 1"
