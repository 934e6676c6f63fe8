# phrames/repositories/sessions.py
"""
Oturum deposu (Firestore `sessions` koleksiyonu).

Doküman id'si çerez değerinin sha256 özetidir; ham oturum id'si veritabanına
yazılmaz. `get` süresi dolmuş kaydı da döndürür, süre kontrolü çağırana aittir.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore_v1.base_query import FieldFilter

from phrames.core.crypto import digest_key, new_session_id
from phrames.schemas.session import Session

logger = logging.getLogger("phrames.sessions")

COL = "sessions"
_CREATE_ATTEMPTS = 3
_BATCH_SIZE = 400


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FirestoreSessionStore:
    def __init__(self, db, ttl_seconds: int, timeout: float = 10.0):
        self._db = db
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

    def _ref(self, session_id: str):
        return self._db.collection(COL).document(digest_key(session_id))

    def create(self, user_id: str) -> Session:
        created_at = _now()
        expires_at = created_at + timedelta(seconds=self.ttl_seconds)
        for _ in range(_CREATE_ATTEMPTS):
            session_id = new_session_id()
            try:
                # create() yalnızca doküman yoksa yazar; çakışan id asla üzerine yazılmaz.
                self._ref(session_id).create({
                    "userId": user_id,
                    "createdAt": created_at,
                    "expiresAt": expires_at,
                }, timeout=self.timeout)
            except AlreadyExists:
                logger.warning("Session id collision, regenerating")
                continue
            return Session(session_id=session_id, user_id=user_id,
                           created_at=created_at, expires_at=expires_at)
        raise RuntimeError("Could not allocate a unique session id")

    def get(self, session_id: str) -> Optional[Session]:
        if not session_id:
            return None
        doc = self._ref(session_id).get(timeout=self.timeout)
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        return Session(
            session_id=session_id,
            user_id=data["userId"],
            created_at=data["createdAt"],
            expires_at=data["expiresAt"],
        )

    def delete(self, session_id: str) -> None:
        if not session_id:
            return
        # Firestore'da olmayan dokümanı silmek hata değildir.
        self._ref(session_id).delete(timeout=self.timeout)

    def _delete_matching(self, query) -> int:
        batch = self._db.batch()
        n = 0
        for doc in query.stream(timeout=self.timeout):
            batch.delete(doc.reference)
            n += 1
            if n % _BATCH_SIZE == 0:
                batch.commit(timeout=self.timeout)
                batch = self._db.batch()
        if n % _BATCH_SIZE:
            batch.commit(timeout=self.timeout)
        return n

    def delete_for_user(self, user_id: str) -> int:
        q = self._db.collection(COL).where(filter=FieldFilter("userId", "==", user_id))
        return self._delete_matching(q)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        q = self._db.collection(COL).where(filter=FieldFilter("expiresAt", "<=", now or _now()))
        removed = self._delete_matching(q)
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed
