"""Candidate source adapters and utilities.

Primary components:
- ``base``: abstract ``CandidateSource`` interface and common exceptions.
- ``postgres``: PostgreSQL full-text + pg_trgm + pgvector implementation.
- ``memory``: in-process implementation for development and tests.
- ``factory``: helpers to construct a source from typed config.

Guidance:
- Prefer constructing via ``factory.create_candidate_source`` so runtime
  services remain decoupled from specific backends.
"""
