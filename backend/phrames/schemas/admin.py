"""
phrames/schemas/admin.py
Yetki yükseltme isteği / cevabı.
"""
from typing import Optional
from pydantic import BaseModel, Field


class GrantAdminRequest(BaseModel):
    # Eksik userId'yi 422 yerine 400 (BadRequest) olarak raporlamak için opsiyonel.
    userId: Optional[str] = Field(None, description="Yönetici yapılacak kullanıcının UID'si")


class GrantResult(BaseModel):
    success: bool = True
    user_id: str
    granted_by: str
    bootstrap: bool = Field(False, description="Tek seferlik ilk-yönetici yolu kullanıldı mı")
