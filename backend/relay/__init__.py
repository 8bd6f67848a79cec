"""
Real-time relay for collaborative code editing.

This module provides:
- RelayManager: Manages sessions, document rooms and message fan-out
- RoomRouter: Room membership (document -> sessions, session -> documents)
- SnapshotStore: The per-document content used as execution input
"""

from .manager import RelayManager, relay_manager, initialize_relay_manager
from .rooms import RoomRouter
from .store import Snapshot, SnapshotStore

__all__ = [
    'RelayManager',
    'relay_manager',
    'initialize_relay_manager',
    'RoomRouter',
    'Snapshot',
    'SnapshotStore',
]
