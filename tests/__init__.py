"""
dynamic-record test suite.

This package contains:
- unit/: Unit tests (in-memory store, no external dependencies)
- integration/: Gateway, record and collection flows on the in-memory store
- e2e/: End-to-end tests against a real MongoDB server
"""
