"""
# `phrames/schemas/user.py` — Kullanıcı ve Oturum Şemaları

## Genel Bilgi
`users/{uid}` dokümanının okunan alanları ve `/auth/*` uçlarının cevapları.
Firestore'da alan adları camelCase tutulur (`isAdmin`, `isBlocked`, `displayName`).

---

### `UserRecord`
| Alan         | Tip     | Açıklama |
|--------------|---------|----------|
| id           | `str`   | Firebase UID |
| email        | `str` / `null` | E-posta |
| display_name | `str` / `null` | Görünen ad |
| is_admin     | `bool`  | Firestore'daki `isAdmin` aynası |
| is_blocked   | `bool`  | Engelli kullanıcı oturum açamaz |

---

### `LoginResponse`
E-posta + şifre ile girişte dönen token paketi (oturum çerezi ayrıca set edilir).

### `SessionUserOut`
`/auth/session`, `/auth/me` cevabı.
"""
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class UserRecord(BaseModel):
    id: str = Field(..., description="Firebase UID")
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False
    is_blocked: bool = False

    @classmethod
    def from_doc(cls, uid: str, data: Dict[str, Any]) -> "UserRecord":
        return cls(
            id=uid,
            email=data.get("email"),
            display_name=data.get("displayName") or data.get("name"),
            is_admin=data.get("isAdmin") is True,
            is_blocked=data.get("isBlocked") is True,
        )


class LoginResponse(BaseModel):
    """Başarılı girişte dönen token paketi."""
    id_token:      str
    refresh_token: str
    expires_in:    int         # saniye
    user_id:       str


class SessionUserOut(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False
    auth_method: Optional[str] = Field(None, description="bearer | session")
