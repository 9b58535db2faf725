"""
restorekit test suite.

This package contains:
- unit/: Unit tests (no external services, temporary SQLite files)
- integration/: Full recovery runs and the CLI against the in-memory artifact store
"""
