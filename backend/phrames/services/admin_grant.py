# phrames/services/admin_grant.py
"""
Yetki yükseltme kapısı: bir kullanıcıya yönetici (isAdmin) claim'i verir.

İsteği yapanın token'ı burada yeniden doğrulanır; daha önce çözümlenmiş bir
Principal kullanılmaz. Kimin yetki verebileceği `admin_grant_policy` ile belirlenir:

- `open`          : geçerli token'ı olan herkes (eski davranış)
- `require_admin` : isteği yapan zaten yönetici olmalı
- `bootstrap`     : `require_admin`, ancak ilk atama bir kez serbest
"""
import logging
from typing import Optional

from google.api_core import exceptions as gexc
from starlette.concurrency import run_in_threadpool

from phrames.core.errors import BadRequest, InvalidToken, PhramesError, Unauthorized, UpstreamUnavailable
from phrames.integrations.identity import VerifiedToken
from phrames.schemas.admin import GrantResult

logger = logging.getLogger("phrames.admin")

STORAGE_ERRORS = (gexc.GoogleAPICallError, gexc.RetryError, ConnectionError, TimeoutError)


class AdminGrantGate:
    def __init__(self, verifier, claims_writer, users, audit, policy: str = "require_admin",
                 admin_uid: Optional[str] = None):
        self.verifier = verifier
        self.claims_writer = claims_writer
        self.users = users
        self.audit = audit
        self.policy = policy
        self.admin_uid = admin_uid

    async def _store(self, fn, *args):
        """Firestore çağrısı; depolama hatası 502 olarak raporlanır."""
        try:
            return await run_in_threadpool(fn, *args)
        except STORAGE_ERRORS as exc:
            logger.error("User store call %s failed: %s", fn.__name__, type(exc).__name__)
            raise UpstreamUnavailable("User store unavailable", status_code=502)

    async def _requester_is_admin(self, requester: VerifiedToken) -> bool:
        if requester.is_admin_claim:
            return True
        if self.admin_uid and requester.uid == self.admin_uid:
            return True
        record = await self._store(self.users.get, requester.uid)
        return bool(record and record.is_admin)

    async def _authorize(self, requester: VerifiedToken) -> bool:
        """İzin verilirse bootstrap yolunun kullanılıp kullanılmadığını döner."""
        if self.policy == "open":
            return False
        if await self._requester_is_admin(requester):
            if self.policy == "bootstrap":
                # Bir yönetici zaten var; bootstrap yolunu kapat.
                await self._store(self.users.claim_bootstrap, requester.uid)
            return False
        if self.policy == "bootstrap" and await self._store(self.users.claim_bootstrap, requester.uid):
            logger.warning("Admin bootstrap path used by %s", requester.uid)
            return True
        raise Unauthorized("Administrator privilege required")

    async def _audit(self, event_type: str, description: str, metadata, actor_id: str) -> None:
        try:
            await run_in_threadpool(self.audit.record, event_type, description, metadata, actor_id)
        except STORAGE_ERRORS:
            # Claim zaten yazıldı; audit kaydı eksik kalırsa log yeterli.
            logger.exception("Failed to write %s audit entry for %s", event_type, metadata.get("targetUserId"))

    async def grant_admin(self, requester_token: Optional[str], target_user_id: Optional[str]) -> GrantResult:
        if not requester_token:
            raise Unauthorized("Unauthorized", status_code=401)
        if not target_user_id:
            raise BadRequest("Missing userId")

        try:
            requester = await self.verifier.verify(requester_token)
        except InvalidToken:
            raise Unauthorized("Unauthorized", status_code=401)

        bootstrap = await self._authorize(requester)

        try:
            await self.claims_writer.grant_admin(target_user_id)
        except PhramesError:
            if bootstrap:
                logger.error("Admin claim write for %s failed after the bootstrap marker was consumed by %s; "
                             "grant admin with set_admin_claim.py", target_user_id, requester.uid)
            raise

        metadata = {"targetUserId": target_user_id, "policy": self.policy, "bootstrap": bootstrap}
        try:
            await self._store(self.users.set_admin, target_user_id, True)
        except UpstreamUnavailable:
            logger.error("Admin claim granted to %s but users/%s isAdmin mirror was not written",
                         target_user_id, target_user_id)
            await self._audit("admin_grant_partial", f"Admin claim granted to {target_user_id}; profile not updated",
                              metadata, requester.uid)
            raise
        logger.info("Admin granted to %s by %s (policy=%s)", target_user_id, requester.uid, self.policy)

        await self._audit("admin_granted", f"Admin access granted to {target_user_id}", metadata, requester.uid)
        return GrantResult(user_id=target_user_id, granted_by=requester.uid, bootstrap=bootstrap)
