"""
# phrames/routers/admin.py — Yönetici Uçları

### POST /admin/grant-admin
Authorization: Bearer <ID_TOKEN> + `{"userId": "..."}`. Token yeniden doğrulanır,
politika kontrol edilir, hedefe `isAdmin` claim'i yazılır.

### POST /admin/users/{user_id}/sessions/revoke
Sadece yönetici. Kullanıcının tüm sunucu oturumlarını siler (ör. engelleme sonrası).
"""
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from phrames.core.auth import extract_bearer_token
from phrames.core.security import get_session_store, require_admin
from phrames.schemas.admin import GrantAdminRequest, GrantResult
from phrames.schemas.principal import Principal

logger = logging.getLogger("phrames.admin")

admin_router = APIRouter(prefix="/admin", tags=["Admin"])


@admin_router.post("/grant-admin", response_model=GrantResult, summary="Kullanıcıya yönetici yetkisi ver")
async def grant_admin(request: Request, payload: GrantAdminRequest):
    gate = request.app.state.admin_gate
    return await gate.grant_admin(extract_bearer_token(request), payload.userId)


@admin_router.post("/users/{user_id}/sessions/revoke", summary="Kullanıcının oturumlarını kapat")
async def revoke_user_sessions(
    user_id: str,
    admin: Principal = Depends(require_admin),
    sessions=Depends(get_session_store),
):
    removed = await run_in_threadpool(sessions.delete_for_user, user_id)
    logger.info("Admin %s revoked %d sessions of %s", admin.uid, removed, user_id)
    return {"success": True, "sessions_removed": removed}
