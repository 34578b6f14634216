"""
Sync module for GraphSync - the write path and delta-sync queries.

Invariants:
    - Persist first, broadcast second
    - Delta queries are strictly greater-than the supplied watermark
"""

from .engine import SyncEngine, parse_since

__all__ = ["SyncEngine", "parse_since"]
