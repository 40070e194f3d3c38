"""Persistence and caching collaborators."""
