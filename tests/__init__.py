"""Tests for the hybrid search service.

Unit tests cover routing, normalization, fusion and assembly; the search
manager and API are exercised against scripted and in-memory candidate
sources, so no PostgreSQL instance is required.
"""
