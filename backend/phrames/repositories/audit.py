# phrames/repositories/audit.py
from typing import Any, Dict, Optional

from firebase_admin import firestore

COL = "logs"


def audit_entry(event_type: str, description: str, metadata: Optional[Dict[str, Any]] = None,
                actor_id: str = "system") -> Dict[str, Any]:
    """Admin panelinde gösterilen `logs` dokümanı."""
    return {
        "eventType": event_type,
        "actorId": actor_id,
        "description": description,
        "metadata": {k: v for k, v in (metadata or {}).items() if v is not None},
        "createdAt": firestore.SERVER_TIMESTAMP,
    }


class FirestoreAuditLog:
    def __init__(self, db, timeout: float = 10.0):
        self._db = db
        self.timeout = timeout

    def record(self, event_type: str, description: str, metadata: Optional[Dict[str, Any]] = None,
               actor_id: str = "system") -> None:
        self._db.collection(COL).add(audit_entry(event_type, description, metadata, actor_id),
                                     timeout=self.timeout)
