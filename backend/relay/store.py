"""
Snapshot store - the execution input for each document.

One slot per document id. Every code_change overwrites the slot wholesale;
there is no versioning, so the last update the server observes wins.
The slot is shared by all files of a document, which is why the file name
of the last write is kept alongside the content.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Any


@dataclass
class Snapshot:
    """Full text of a document as last written, plus who wrote it."""
    document_id: str
    content: str
    file_name: Optional[str]
    sender_id: Optional[str]
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        # Content is left out; the HTTP API only exposes metadata
        return {
            "document_id": self.document_id,
            "file_name": self.file_name,
            "sender_id": self.sender_id,
            "length": len(self.content),
            "updated_at": self.updated_at.isoformat(),
        }


class SnapshotStore:
    """In-memory snapshot map. Entries are never deleted."""

    def __init__(self):
        self._snapshots: Dict[str, Snapshot] = {}

    def put(
        self,
        document_id: str,
        content: str,
        file_name: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> Snapshot:
        snapshot = Snapshot(
            document_id=document_id,
            content=content,
            file_name=file_name,
            sender_id=sender_id,
            updated_at=datetime.now(),
        )
        self._snapshots[document_id] = snapshot
        return snapshot

    def get(self, document_id: str) -> Optional[Snapshot]:
        return self._snapshots.get(document_id)

    def content(self, document_id: str) -> Optional[str]:
        """Current text for a document, or None if it was never written."""
        snapshot = self._snapshots.get(document_id)
        return snapshot.content if snapshot else None

    def list(self) -> Dict[str, Snapshot]:
        return dict(self._snapshots)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
