"""Bundled JSON schemas (request documents and audit log events)."""
