"""
GraphSync Test Suite.

This package contains:
- unit/: Unit tests (store, resolver, router, handler, engine, mirror, schemas, config)
- integration/: Integration tests (in-process app over HTTP and WebSocket, SDK)
"""
