"""Verification engine: hashing, manifest retrieval, registry lookups, verdicts."""
