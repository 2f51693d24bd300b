"""
campusdb Test Suite.

This package contains:
- unit/: Unit tests (in-memory store, one component at a time)
- integration/: Integration tests (both store backends, HTTP through ASGI)
"""
