from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from neo4j import GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError, ServiceUnavailable, SessionExpired, TransientError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from update_dispatch.errors import GatewayUnavailable

from .models import EntityReference, Property

if TYPE_CHECKING:
    from update_dispatch.settings import DispatchSettings

logger = logging.getLogger(__name__)

_TRANSIENT = (ServiceUnavailable, SessionExpired, TransientError)


@dataclass(slots=True)
class Neo4jConfig:
    uri: str
    user: str
    password: str
    database: str = "neo4j"
    retry_attempts: int = 3
    # seconds; initial backoff and max jitter
    retry_wait: float = 0.2

    @classmethod
    def from_settings(cls, s: DispatchSettings) -> Neo4jConfig:
        if not s.neo4j_password:
            raise RuntimeError("Neo4j not configured. Set UPDATE_DISPATCH_NEO4J_PASSWORD.")
        return cls(
            uri=s.neo4j_uri,
            user=s.neo4j_user,
            password=s.neo4j_password,
            database=s.neo4j_database,
            retry_attempts=s.retry_attempts,
        )


_SUBJECT_COLUMNS = "s.dbkey AS dbkey, s.namespace AS namespace, s.interwiki AS interwiki, s.subobject AS subobject"


class Neo4jKnowledgeStore:
    """Neo4j-backed knowledge store gateway.

    Subjects are `:Subject` nodes keyed by their serialized reference; each
    property value is an `[:ANNOTATION {property}]` edge to a `:Subject`
    (page values) or `:Literal` node. Relationship types cannot be
    parameterized, so the property key lives on the edge.

    All queries are reads; results are ordered by node id.
    """

    def __init__(self, cfg: Neo4jConfig, *, driver: Any | None = None):
        self.cfg = cfg
        # Driver is thread-safe; sessions are lightweight.
        self._driver = driver or GraphDatabase.driver(cfg.uri, auth=(cfg.user, cfg.password))

    def close(self) -> None:
        self._driver.close()

    def ensure_schema(self) -> None:
        stmts = [
            "CREATE CONSTRAINT subject_id IF NOT EXISTS FOR (n:Subject) REQUIRE n.id IS UNIQUE",
            "CREATE INDEX annotation_property IF NOT EXISTS FOR ()-[r:ANNOTATION]-() ON (r.property)",
        ]
        for q in stmts:
            self._run(q, {})

    def get_properties(self, subject: EntityReference) -> list[Property]:
        q = """
        MATCH (s:Subject {id: $id})-[r:ANNOTATION]->()
        RETURN DISTINCT r.property AS property
        ORDER BY property
        """
        return [Property(row["property"]) for row in self._run(q, {"id": subject.serialize()})]

    def get_in_properties(self, subject: EntityReference) -> list[Property]:
        q = """
        MATCH (:Subject)-[r:ANNOTATION]->(o:Subject {id: $id})
        RETURN DISTINCT r.property AS property
        ORDER BY property
        """
        return [Property(row["property"]) for row in self._run(q, {"id": subject.serialize()})]

    def get_all_property_subjects(self, prop: Property) -> list[EntityReference]:
        q = f"""
        MATCH (s:Subject)-[:ANNOTATION {{property: $property}}]->()
        WITH DISTINCT s
        RETURN {_SUBJECT_COLUMNS}
        ORDER BY s.id
        """
        return self._subjects(self._run(q, {"property": prop.key}))

    def get_property_subjects(self, prop: Property, value: EntityReference) -> list[EntityReference]:
        q = f"""
        MATCH (s:Subject)-[:ANNOTATION {{property: $property}}]->(:Subject {{id: $value}})
        WITH DISTINCT s
        RETURN {_SUBJECT_COLUMNS}
        ORDER BY s.id
        """
        return self._subjects(self._run(q, {"property": prop.key, "value": value.serialize()}))

    @staticmethod
    def _subjects(rows: list[dict[str, Any]]) -> list[EntityReference]:
        return [
            EntityReference(
                dbkey=row.get("dbkey") or "",
                namespace=int(row.get("namespace") or 0),
                interwiki=row.get("interwiki") or "",
                subobject=row.get("subobject") or "",
            )
            for row in rows
        ]

    def _run(self, cypher: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.cfg.retry_attempts),
            wait=wait_exponential_jitter(initial=self.cfg.retry_wait, max=5.0, jitter=self.cfg.retry_wait),
            retry=retry_if_exception_type(_TRANSIENT),
        )
        try:
            for attempt in retrying:
                with attempt:
                    with self._driver.session(database=self.cfg.database) as s:
                        res = s.run(cypher, **params)
                        return [dict(r) for r in res]
        except (Neo4jError, DriverError) as e:
            logger.warning("Neo4j query failed: %s", e)
            raise GatewayUnavailable(f"knowledge store query failed: {e}") from e
        return []
