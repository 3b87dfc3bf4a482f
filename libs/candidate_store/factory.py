"""Candidate source factory.

Centralizes creation of concrete ``CandidateSource`` backends so callers don't
depend on implementation details. New backends can be added without changing
call sites.
"""

from typing import Any, Dict
from enum import Enum
import structlog

from .base import CandidateSource
from .memory import InMemoryCandidateSource
from .postgres import PostgresCandidateSource

logger = structlog.get_logger("candidate_store.factory")


class CandidateSourceType(Enum):
    """Supported candidate source backends."""
    POSTGRES = "postgres"
    MEMORY = "memory"


class CandidateSourceFactory:
    """Factory for creating candidate source instances."""

    @staticmethod
    def create(
        source_type: CandidateSourceType,
        config: Dict[str, Any]
    ) -> CandidateSource:
        """Create a candidate source instance.

        Parameters
        - source_type: A ``CandidateSourceType`` enum value
        - config: Backend-specific parameters (e.g., DSN for postgres)
        """

        if source_type == CandidateSourceType.POSTGRES:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("Postgres candidate source requires 'dsn' in config")

            return PostgresCandidateSource(
                dsn=dsn,
                table=config.get("table", "search_items"),
                id_column=config.get("id_column", "id"),
                text_columns=config.get("text_columns", ("title", "body")),
                payload_columns=config.get("payload_columns", ("title", "body", "updated_at")),
                tsvector_column=config.get("tsvector_column", "search_vector"),
                embedding_column=config.get("embedding_column", "embedding"),
                text_search_config=config.get("text_search_config", "english"),
                fuzzy_threshold=config.get("fuzzy_threshold", 0.3),
                max_distance=config.get("max_distance"),
                pool_size=config.get("pool_size", 10),
                command_timeout=config.get("command_timeout", 30),
                vector_dimension=config.get("vector_dimension"),
            )

        elif source_type == CandidateSourceType.MEMORY:
            return InMemoryCandidateSource(
                text_fields=config.get("text_columns", ("title", "body")),
                vector_dimension=config.get("vector_dimension"),
                fuzzy_threshold=config.get("fuzzy_threshold", 0.3),
                max_distance=config.get("max_distance"),
            )

        else:
            raise ValueError(f"Unsupported candidate source type: {source_type}")

    @staticmethod
    def create_from_config(config: Dict[str, Any]) -> CandidateSource:
        """Create a candidate source from a configuration dictionary.

        Expects a ``type`` key and any implementation-specific fields.
        """
        source_type_str = config.get("type", "postgres")

        try:
            source_type = CandidateSourceType(source_type_str)
        except ValueError:
            raise ValueError(f"Unsupported candidate source type: {source_type_str}")

        logger.info("Creating candidate source", backend=source_type.value)
        return CandidateSourceFactory.create(source_type, config)


def create_candidate_source(config: Dict[str, Any]) -> CandidateSource:
    """Convenience function to create a candidate source.

    ``SearchConfig.candidate_store_config()`` produces a suitable mapping.
    """
    return CandidateSourceFactory.create_from_config(config)
