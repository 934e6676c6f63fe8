"""
phrames/schemas/principal.py
Principal modeli: isteği yapan doğrulanmış kimlik.
"""
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

AuthMethod = Literal["bearer", "session"]


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str = Field(..., description="Firebase UID")
    email: Optional[str] = Field(None, description="E-posta (varsa)")
    is_admin: bool = Field(False, description="Yönetici mi")
    display_name: Optional[str] = Field(None, description="Görünen ad (varsa)")
    auth_method: AuthMethod = Field(..., description="bearer | session")
