"""PostgreSQL implementation of the candidate source.

Runs the three matching strategies against one table:

- keyword: full-text search over a stored ``tsvector`` column ranked with
  ``ts_rank_cd`` (GIN index)
- fuzzy: ``pg_trgm`` trigram similarity across a set of text columns, taking
  the best column per row (GIN ``gin_trgm_ops`` indexes)
- semantic: ``pgvector`` cosine distance (``<=>``) over an embedding column;
  rows whose embedding is not populated yet are skipped

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_fetch`` so asyncpg errors are mapped onto
  the transient/permanent split of ``libs.candidate_store.base``
"""

import asyncio
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from .base import (
    CandidateSource,
    CandidateSourceConfigurationError,
    CandidateSourceUnavailableError,
    SourceHit,
)

logger = structlog.get_logger("candidate_store.postgres")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Errors that mean the schema or extensions do not match what we query.
_CONFIGURATION_ERRORS = (
    asyncpg.exceptions.UndefinedTableError,
    asyncpg.exceptions.UndefinedColumnError,
    asyncpg.exceptions.UndefinedFunctionError,
    asyncpg.exceptions.UndefinedObjectError,
    asyncpg.exceptions.DataError,
    asyncpg.exceptions.InsufficientPrivilegeError,
)

# Aliases computed by every candidate query.
RESERVED_COLUMNS = frozenset({"record_id", "score"})


def quote_identifier(name: str) -> str:
    """Quote a (optionally schema-qualified) SQL identifier.

    Raises ``CandidateSourceConfigurationError`` for anything that is not a
    plain identifier, so table and column names can never carry SQL.
    """
    parts = name.split(".")
    if not parts or len(parts) > 2 or not all(_IDENTIFIER_RE.match(p) for p in parts):
        raise CandidateSourceConfigurationError(f"Invalid SQL identifier: {name!r}")
    return ".".join(f'"{p}"' for p in parts)


class PostgresCandidateSource(CandidateSource):
    """Candidate source backed by PostgreSQL full-text, pg_trgm and pgvector."""

    def __init__(
        self,
        dsn: str,
        table: str = "search_items",
        id_column: str = "id",
        text_columns: Sequence[str] = ("title", "body"),
        payload_columns: Sequence[str] = ("title", "body", "updated_at"),
        tsvector_column: str = "search_vector",
        embedding_column: str = "embedding",
        text_search_config: str = "english",
        fuzzy_threshold: float = 0.3,
        max_distance: Optional[float] = None,
        pool_size: int = 10,
        command_timeout: int = 30,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PostgreSQL-backed candidate source.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - table: Table (optionally ``schema.table``) holding searchable rows
        - id_column: Column used as the opaque record id
        - text_columns: Columns compared with trigram similarity
        - payload_columns: Columns returned unmodified with each hit
        - tsvector_column: Stored ``tsvector`` column for keyword matching
        - embedding_column: ``vector`` column for semantic matching
        - text_search_config: Text search configuration (``regconfig``)
        - fuzzy_threshold: Minimum trigram similarity for a fuzzy hit
        - max_distance: Optional cosine distance cutoff for semantic hits
        - pool_size: Max size of asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Expected dimensionality of query vectors
        """
        if not text_columns:
            raise CandidateSourceConfigurationError("At least one text column is required")
        reserved = RESERVED_COLUMNS.intersection(payload_columns)
        if reserved:
            raise CandidateSourceConfigurationError(
                f"Payload columns may not use reserved names: {sorted(reserved)}"
            )

        self.dsn = dsn
        self.table = quote_identifier(table)
        self.id_column = quote_identifier(id_column)
        self.text_columns = [quote_identifier(c) for c in text_columns]
        self.payload_columns = list(payload_columns)
        self._payload_sql = [quote_identifier(c) for c in payload_columns]
        self.tsvector_column = quote_identifier(tsvector_column)
        self.embedding_column = quote_identifier(embedding_column)
        self.text_search_config = text_search_config
        self.fuzzy_threshold = fuzzy_threshold
        self.max_distance = max_distance
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None
        self._pool_lock = asyncio.Lock()

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database. Strategies
        start concurrently, so creation is serialized on a lock.
        """
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        self.dsn,
                        min_size=1,
                        max_size=self.pool_size,
                        command_timeout=self.command_timeout,
                        init=self._init_connection,
                    )
                    logger.info("Created candidate source connection pool", pool_size=self.pool_size)
                except Exception as e:
                    logger.error("Failed to create candidate source connection pool", error=str(e))
                    raise CandidateSourceUnavailableError(f"Failed to create connection pool: {e}")

        return self._pool

    def _select_list(self, score_expression: str) -> str:
        columns = [f"{self.id_column} AS record_id"]
        columns.extend(self._payload_sql)
        columns.append(f"{score_expression} AS score")
        return ",\n                   ".join(columns)

    def build_keyword_query(self) -> str:
        """SQL for keyword matching; ``$1`` text, ``$2`` limit, ``$3`` regconfig."""
        tsquery = "plainto_tsquery($3::regconfig, $1)"
        return f"""
            SELECT {self._select_list(f"ts_rank_cd({self.tsvector_column}, {tsquery})")}
            FROM {self.table}
            WHERE {self.tsvector_column} @@ {tsquery}
            ORDER BY score DESC
            LIMIT $2
        """

    def build_fuzzy_query(self) -> str:
        """SQL for trigram matching; ``$1`` text, ``$2`` limit."""
        similarities = ", ".join(
            f"similarity(coalesce({column}, ''), $1)" for column in self.text_columns
        )
        best = similarities if len(self.text_columns) == 1 else f"GREATEST({similarities})"
        predicate = "\n               OR ".join(
            f"coalesce({column}, '') % $1" for column in self.text_columns
        )
        return f"""
            SELECT {self._select_list(best)}
            FROM {self.table}
            WHERE {predicate}
            ORDER BY score DESC
            LIMIT $2
        """

    def build_semantic_query(self) -> str:
        """SQL for vector matching; ``$1`` vector, ``$2`` limit, ``$3`` max distance."""
        distance = f"({self.embedding_column} <=> $1)"
        cutoff = f"\n              AND {distance} < $3" if self.max_distance is not None else ""
        return f"""
            SELECT {self._select_list(distance)}
            FROM {self.table}
            WHERE {self.embedding_column} IS NOT NULL{cutoff}
            ORDER BY {distance}
            LIMIT $2
        """

    async def _fetch(self, operation: str, query: str, *args: Any, trgm_threshold: Optional[float] = None) -> List[asyncpg.Record]:
        """Execute a query and map asyncpg failures onto source errors."""
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                if trgm_threshold is None:
                    return await conn.fetch(query, *args)
                async with conn.transaction():
                    await conn.execute(
                        "SELECT set_config('pg_trgm.similarity_threshold', $1, true)",
                        str(trgm_threshold),
                    )
                    return await conn.fetch(query, *args)
        except CandidateSourceUnavailableError:
            raise
        except _CONFIGURATION_ERRORS as e:
            logger.error("Candidate query misconfigured", operation=operation, error=str(e))
            raise CandidateSourceConfigurationError(f"{operation} failed: {e}")
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Candidate query failed", operation=operation, error=str(e))
            raise CandidateSourceUnavailableError(f"{operation} failed: {e}")

    def _to_hits(self, rows: Iterable[asyncpg.Record]) -> List[SourceHit]:
        hits = []
        for row in rows:
            payload = {column: row[column] for column in self.payload_columns}
            hits.append((row["record_id"], float(row["score"]), payload))
        return hits

    async def keyword_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        """Full-text match ranked with ``ts_rank_cd``."""
        rows = await self._fetch(
            "keyword_match",
            self.build_keyword_query(),
            text,
            limit,
            self.text_search_config,
        )
        hits = self._to_hits(rows)
        logger.debug("Keyword match completed", results_count=len(hits))
        return hits

    async def fuzzy_match(self, text: str, limit: int = 20) -> List[SourceHit]:
        """Trigram match; score is the best column similarity."""
        rows = await self._fetch(
            "fuzzy_match",
            self.build_fuzzy_query(),
            text,
            limit,
            trgm_threshold=self.fuzzy_threshold,
        )
        hits = self._to_hits(rows)
        logger.debug("Fuzzy match completed", results_count=len(hits))
        return hits

    async def semantic_match(self, vector: Sequence[float], limit: int = 20) -> List[SourceHit]:
        """Cosine distance match; score is the raw distance."""
        vector_array = self._ensure_vector_dimension(vector)
        args: List[Any] = [vector_array, limit]
        if self.max_distance is not None:
            args.append(self.max_distance)

        rows = await self._fetch("semantic_match", self.build_semantic_query(), *args)
        hits = self._to_hits(rows)
        logger.debug(
            "Semantic match completed",
            query_vector_dim=len(vector_array),
            results_count=len(hits)
        )
        return hits

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            await self._fetch("health_check", "SELECT 1")
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed candidate source connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise CandidateSourceConfigurationError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise CandidateSourceConfigurationError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
