"""
GraphSync Server - realtime collaborative graph editing backend.

This package implements the synchronization core of a multi-tenant graph
editor:
- Projects as the tenancy unit, each with its own nodes and edges
- Opaque session tokens that resolve to exactly one project
- A per-project watermark used as the delta-sync cursor
- Project rooms that fan out every mutation to live connections

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │   Client    │────▶│  REST API   │────▶│ SyncEngine  │
    │   (SDK)     │     │  (FastAPI)  │     │             │
    └──────┬──────┘     └─────────────┘     └──┬───────┬──┘
           │                                   │       │
           │  /ws                              ▼       ▼
           │            ┌─────────────┐  ┌─────────┐ ┌─────────────────┐
           └───────────▶│  Realtime   │  │ SQLite  │ │ BroadcastRouter │
                        │  handler    │─▶│ (store) │ │ (project rooms) │
                        └─────────────┘  └─────────┘ └─────────────────┘

Invariants:
    - SQLite is the source of truth, rooms are ephemeral
    - Every mutation and its watermark bump commit in one transaction
    - Every entity operation is scoped by the project its token resolves to

How to change safely:
    - Route new mutations through SyncEngine so they are broadcast
    - Keep realtime event names stable, clients dispatch on them

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
