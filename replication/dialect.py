"""
Server dialect resolution.

A dialect is picked once per session from the server version reported at
open time and then injected wherever statement text depends on the server
generation: identity functions, schema introspection, schema drop/create
statements and the marker uniqueness constraint.

Supported generations:
    - 3.x: ``db.indexes()`` / ``db.constraints()`` procedures whose
      ``description`` column doubles as DDL, ``ON ... ASSERT`` syntax.
    - 4.x: ``SHOW INDEXES`` / ``SHOW CONSTRAINTS`` with ``createStatement``,
      named ``ON ... ASSERT`` constraints, integer ``id()``.
    - 5.x and later: ``SHOW`` commands, ``FOR ... REQUIRE`` syntax and
      string ``elementId()`` identities.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol

if TYPE_CHECKING:
    from replication.marker import CorrelationMarker

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def quote_identifier(name: str) -> str:
    """Backtick-quote a label, relationship type, property or schema name."""
    return "`" + str(name).replace("`", "``") + "`"


@dataclass(frozen=True, order=True)
class ServerVersion:
    """Server version as reported by ``dbms.components()``."""

    major: int
    minor: int = 0
    patch: int = 0
    edition: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str, edition: str = "") -> "ServerVersion":
        match = _VERSION_RE.search(str(text))
        if match is None:
            raise ValueError(f"Unrecognised server version: {text!r}")
        major, minor, patch = (int(part or 0) for part in match.groups())
        return cls(major=major, minor=minor, patch=patch, edition=edition)

    def __str__(self) -> str:
        suffix = f" ({self.edition})" if self.edition else ""
        return f"{self.major}.{self.minor}.{self.patch}{suffix}"


@dataclass(frozen=True)
class SchemaEntry:
    """An index or constraint listed by a dialect."""

    kind: str  # "index" or "constraint"
    name: str
    drop_statement: str
    create_statement: Optional[str] = None
    owned_by_constraint: bool = False
    token_lookup: bool = False

    @property
    def replicable(self) -> bool:
        """Whether copying this entry should issue a create statement."""
        return (
            self.create_statement is not None
            and not self.owned_by_constraint
            and not self.token_lookup
        )


class Dialect:
    """Statement rules for one server generation."""

    name = "base"
    identity_function = "id"
    list_constraints_query = ""
    list_indexes_query = ""

    def identity(self, variable: str) -> str:
        return f"{self.identity_function}({variable})"

    def constraint_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        raise NotImplementedError

    def index_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        raise NotImplementedError

    def marker_constraint_create(self, marker: "CorrelationMarker") -> str:
        raise NotImplementedError

    def marker_constraint_drop(self, marker: "CorrelationMarker") -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ProcedureDialect(Dialect):
    """Neo4j 3.x: schema listed through procedures."""

    name = "procedures"
    list_constraints_query = "CALL db.constraints() YIELD description RETURN description"
    list_indexes_query = "CALL db.indexes()"

    def constraint_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        description = row["description"]
        return SchemaEntry(
            kind="constraint",
            name=description,
            drop_statement=f"DROP {description}",
            create_statement=f"CREATE {description}",
        )

    def index_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        description = row["description"]
        index_type = str(row.get("type") or "").lower()
        name = row.get("indexName") or description
        if "fulltext" in index_type:
            # Fulltext indexes are procedure-managed and have no DDL form.
            return SchemaEntry(
                kind="index",
                name=name,
                drop_statement=f"CALL db.index.fulltext.drop('{name}')",
            )
        return SchemaEntry(
            kind="index",
            name=name,
            drop_statement=f"DROP {description}",
            create_statement=f"CREATE {description}",
            owned_by_constraint="unique" in index_type,
        )

    def marker_constraint_create(self, marker: "CorrelationMarker") -> str:
        return (
            f"CREATE CONSTRAINT ON (n:{quote_identifier(marker.label)}) "
            f"ASSERT n.{quote_identifier(marker.property_name)} IS UNIQUE"
        )

    def marker_constraint_drop(self, marker: "CorrelationMarker") -> str:
        return (
            f"DROP CONSTRAINT ON (n:{quote_identifier(marker.label)}) "
            f"ASSERT n.{quote_identifier(marker.property_name)} IS UNIQUE"
        )


class ShowDialect(Dialect):
    """Neo4j 4.x: ``SHOW`` introspection, named ``ON ... ASSERT`` constraints."""

    name = "show"
    list_constraints_query = "SHOW CONSTRAINTS YIELD name, createStatement"
    list_indexes_query = "SHOW INDEXES YIELD name, type, uniqueness, createStatement"

    def constraint_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        name = row["name"]
        return SchemaEntry(
            kind="constraint",
            name=name,
            drop_statement=f"DROP CONSTRAINT {quote_identifier(name)}",
            create_statement=row.get("createStatement"),
        )

    def _is_owned(self, row: dict[str, Any]) -> bool:
        return str(row.get("uniqueness") or "").upper() == "UNIQUE"

    def index_from_row(self, row: dict[str, Any]) -> SchemaEntry:
        name = row["name"]
        return SchemaEntry(
            kind="index",
            name=name,
            drop_statement=f"DROP INDEX {quote_identifier(name)}",
            create_statement=row.get("createStatement"),
            owned_by_constraint=self._is_owned(row),
            token_lookup=str(row.get("type") or "").upper() == "LOOKUP",
        )

    def marker_constraint_create(self, marker: "CorrelationMarker") -> str:
        return (
            f"CREATE CONSTRAINT {quote_identifier(marker.constraint_name)} "
            f"ON (n:{quote_identifier(marker.label)}) "
            f"ASSERT n.{quote_identifier(marker.property_name)} IS UNIQUE"
        )

    def marker_constraint_drop(self, marker: "CorrelationMarker") -> str:
        return f"DROP CONSTRAINT {quote_identifier(marker.constraint_name)}"


class ModernDialect(ShowDialect):
    """Neo4j 5.x and later: ``FOR ... REQUIRE`` and ``elementId()``."""

    name = "modern"
    identity_function = "elementId"
    list_indexes_query = "SHOW INDEXES YIELD name, type, owningConstraint, createStatement"

    def _is_owned(self, row: dict[str, Any]) -> bool:
        return row.get("owningConstraint") is not None

    def marker_constraint_create(self, marker: "CorrelationMarker") -> str:
        return (
            f"CREATE CONSTRAINT {quote_identifier(marker.constraint_name)} "
            f"FOR (n:{quote_identifier(marker.label)}) "
            f"REQUIRE n.{quote_identifier(marker.property_name)} IS UNIQUE"
        )


def resolve_dialect(version: ServerVersion) -> Dialect:
    """Pick the dialect for a server version."""
    if version.major <= 3:
        dialect: Dialect = ProcedureDialect()
    elif version.major == 4:
        dialect = ShowDialect()
    else:
        dialect = ModernDialect()
    logger.debug("Resolved dialect %s for server %s", dialect.name, version)
    return dialect


class _SchemaSession(Protocol):
    dialect: Dialect

    async def run(
        self, query: str, parameters: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]: ...


async def list_constraints(session: _SchemaSession) -> list[SchemaEntry]:
    rows = await session.run(session.dialect.list_constraints_query)
    return [session.dialect.constraint_from_row(row) for row in rows]


async def list_indexes(session: _SchemaSession) -> list[SchemaEntry]:
    rows = await session.run(session.dialect.list_indexes_query)
    return [session.dialect.index_from_row(row) for row in rows]
