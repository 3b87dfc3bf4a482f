"""Hybrid search components for keyword, fuzzy and semantic ranking.

Includes the ``SearchManager`` which routes a query to the applicable
matching strategies, runs them concurrently and merges their results.
"""
