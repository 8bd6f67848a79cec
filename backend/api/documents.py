"""
REST API endpoints for document rooms.

Read-only view of the relay state alongside the WebSocket real-time features.
"""

from fastapi import APIRouter, HTTPException

from relay import manager as relay_module


router = APIRouter(prefix="/api/documents", tags=["documents"])


def _get_manager():
    if relay_module.relay_manager is None:
        raise HTTPException(status_code=503, detail="Relay manager not initialized")
    return relay_module.relay_manager


@router.get("")
async def list_documents():
    """
    List known documents.

    Returns every active room with its session count and every document
    that has a snapshot, with snapshot metadata (no content).
    """
    manager = _get_manager()
    rooms = manager.rooms.active_rooms()
    snapshots = manager.snapshots.list()

    documents = []
    for document_id in sorted(set(rooms) | set(snapshots)):
        snapshot = snapshots.get(document_id)
        documents.append({
            "document_id": document_id,
            "session_count": rooms.get(document_id, 0),
            "snapshot": snapshot.to_dict() if snapshot else None,
        })
    return {"documents": documents}


@router.get("/{document_id:path}")
async def get_document(document_id: str):
    """Get room members and snapshot metadata for a document."""
    manager = _get_manager()
    info = manager.get_document_info(document_id)
    if info is None:
        raise HTTPException(status_code=404, detail=f"Document '{document_id}' not found")
    return info
