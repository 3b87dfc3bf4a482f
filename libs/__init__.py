"""Shared libraries for the search service.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and tracing.
- ``libs.candidate_store``: candidate source abstractions and concrete backends.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
