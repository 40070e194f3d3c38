"""Job pipeline for verification work."""
