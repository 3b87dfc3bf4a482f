"""Resilience adapters for external collaborators."""
