"""
Ledger Backup Engine Test Suite.

This package contains:
- unit/: Unit tests (in-memory store and uploader, no network)
- integration/: Integration tests (SQLite files, HTTP API, CLI)
"""
