"""
Realtime module for GraphSync - project rooms over WebSocket.

This module handles:
- Room membership and live counts per project (BroadcastRouter)
- The per-connection join/leave state machine (ConnectionHandler)
- The {"event", "data"} frame format (protocol)

Invariants:
    - Room state is in-memory only and resets on restart
    - Broadcast is best-effort and independent of durability
"""

from .router import BroadcastRouter, RealtimeConnection

__all__ = ["BroadcastRouter", "RealtimeConnection"]
