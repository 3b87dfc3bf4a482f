"""Search service package.

Layout:
- ``api``: HTTP endpoints for search.
- ``hybrid``: query model, routing and search orchestration.
- ``ranking``: score normalization, fusion and result assembly.
- ``adapters``: circuit breakers around candidate source calls.
- ``runtime``: service-local metrics helpers.
"""
