"""
graphledger test suite.

This package contains:
- unit/: Unit tests for the store, audit log, statuses, backups and config
- integration/: Restore engine, HTTP gateway and admin CLI tests
"""
