"""Shared infrastructure: cache store, errors, logging, metrics, single-flight."""
