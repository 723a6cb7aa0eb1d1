"""
Chat server test suite.

This package contains:
- unit/: Unit tests (no network, no Timeline runner)
- integration/: Integration tests (Controller, synchronizer, aiohttp apps)
"""
