# phrames/repositories/users.py
from typing import Optional

from firebase_admin import firestore
from google.api_core.exceptions import AlreadyExists

from phrames.schemas.user import UserRecord

COL = "users"
BOOTSTRAP_DOC = ("system", "admin_bootstrap")


class FirestoreUserStore:
    """`users/{uid}` profilleri ve tek seferlik yönetici bootstrap işareti."""

    def __init__(self, db, timeout: float = 10.0):
        self._db = db
        self.timeout = timeout

    def get(self, uid: str) -> Optional[UserRecord]:
        doc = self._db.collection(COL).document(uid).get(timeout=self.timeout)
        if not doc.exists:
            return None
        return UserRecord.from_doc(uid, doc.to_dict() or {})

    def ensure(self, uid: str, email: Optional[str] = None, display_name: Optional[str] = None,
               email_verified: bool = False) -> UserRecord:
        """
        Profil yoksa token bilgileriyle oluşturur (login sırasında otomatik kayıt).
        Varsa olduğu gibi döner.
        """
        ref = self._db.collection(COL).document(uid)
        doc = ref.get(timeout=self.timeout)
        if doc.exists:
            return UserRecord.from_doc(uid, doc.to_dict() or {})
        data = {
            "email": email or "",
            "displayName": display_name or "",
            "emailVerified": bool(email_verified),
            "isAdmin": False,
            "createdAt": firestore.SERVER_TIMESTAMP,
        }
        try:
            ref.create(data, timeout=self.timeout)
        except AlreadyExists:
            # Eşzamanlı ilk login; diğer istek profili yazdı.
            return self.get(uid) or UserRecord(id=uid, email=email, display_name=display_name)
        return UserRecord(id=uid, email=email, display_name=display_name)

    def set_admin(self, uid: str, is_admin: bool = True) -> None:
        self._db.collection(COL).document(uid).set(
            {"isAdmin": is_admin, "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
            timeout=self.timeout,
        )

    def claim_bootstrap(self, uid: str) -> bool:
        """İlk yönetici atamasını bir kez kaydeder; daha önce yapılmışsa False."""
        col, doc_id = BOOTSTRAP_DOC
        try:
            self._db.collection(col).document(doc_id).create(
                {"grantedBy": uid, "createdAt": firestore.SERVER_TIMESTAMP},
                timeout=self.timeout,
            )
        except AlreadyExists:
            return False
        return True
