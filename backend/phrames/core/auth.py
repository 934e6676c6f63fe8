# phrames/core/auth.py
"""
Kimlik çözümleyici: bir isteğin kim tarafından yapıldığını bulur.

Stratejiler sırayla denenir, ilk `Success` kazanır:
1. `BearerTokenStrategy`: Authorization: Bearer <Firebase ID token>
2. `SessionCookieStrategy`: `session-id` çerezi (sunucu tarafı oturum)

`Skip` bir sonraki stratejiye geçer, `HardFail` zinciri hemen durdurur.
Token doğrulanamazsa (geçersiz, süresi dolmuş, iptal) bearer stratejisi `Skip`
döner; böylece eski token'ı olan ama oturumu geçerli istemci çalışmaya devam eder.
Sağlayıcı kesintisinde aynı davranış `auth_fallback_on_provider_error` ile
açılıp kapatılır.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from phrames.core.errors import (
    InvalidToken,
    PhramesError,
    Unauthenticated,
    Unauthorized,
    UpstreamUnavailable,
)
from phrames.schemas.principal import AuthMethod, Principal
from phrames.schemas.user import UserRecord

logger = logging.getLogger("phrames.auth")


@dataclass(frozen=True)
class Success:
    principal: Principal


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class HardFail:
    error: PhramesError


StrategyOutcome = Union[Success, Skip, HardFail]


def extract_bearer_token(request: Request) -> Optional[str]:
    """
    Authorization: Bearer <id_token> başlığından token'ı alır.
    Yoksa None döner.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def build_principal(user: UserRecord, auth_method: AuthMethod, *, claim_admin: bool = False,
                    admin_uid: Optional[str] = None, email: Optional[str] = None) -> Principal:
    """Principal yalnızca burada üretilir."""
    is_admin = claim_admin or user.is_admin or bool(admin_uid and user.id == admin_uid)
    return Principal(
        uid=user.id,
        email=email or user.email,
        is_admin=is_admin,
        display_name=user.display_name,
        auth_method=auth_method,
    )


async def _load_user(users, uid: str) -> Optional[UserRecord]:
    try:
        return await run_in_threadpool(users.get, uid)
    except Exception as exc:
        logger.warning("User lookup failed for %s: %s", uid, type(exc).__name__)
        return None


class BearerTokenStrategy:
    name = "bearer"

    def __init__(self, verifier, users, admin_uid: Optional[str] = None,
                 fallback_on_provider_error: bool = True):
        self.verifier = verifier
        self.users = users
        self.admin_uid = admin_uid
        self.fallback_on_provider_error = fallback_on_provider_error

    async def authenticate(self, request: Request) -> StrategyOutcome:
        token = extract_bearer_token(request)
        if not token:
            return Skip("no bearer token")
        try:
            verified = await self.verifier.verify(token)
        except InvalidToken as exc:
            logger.info("Bearer token rejected (%s); falling back", exc)
            return Skip("invalid token")
        except UpstreamUnavailable as exc:
            if not self.fallback_on_provider_error:
                return HardFail(exc)
            logger.warning("Identity provider unavailable (%s); degrading to session auth", exc)
            return Skip("provider unavailable")

        user = await _load_user(self.users, verified.uid)
        if user is None:
            return Skip("no local user record")
        if user.is_blocked:
            return HardFail(Unauthorized("Account is blocked"))
        return Success(build_principal(
            user, "bearer",
            claim_admin=verified.is_admin_claim,
            admin_uid=self.admin_uid,
            email=verified.email,
        ))


class SessionCookieStrategy:
    name = "session"

    def __init__(self, sessions, users, cookie_name: str = "session-id", admin_uid: Optional[str] = None):
        self.sessions = sessions
        self.users = users
        self.cookie_name = cookie_name
        self.admin_uid = admin_uid

    async def authenticate(self, request: Request) -> StrategyOutcome:
        session_id = request.cookies.get(self.cookie_name)
        if not session_id:
            return Skip("no session cookie")
        try:
            session = await run_in_threadpool(self.sessions.get, session_id)
        except Exception as exc:
            logger.warning("Session lookup failed: %s", type(exc).__name__)
            return Skip("session store unavailable")
        # Süresi dolmuş ama henüz silinmemiş oturum, olmayan oturumla aynıdır.
        if session is None or session.is_expired():
            return Skip("no active session")

        user = await _load_user(self.users, session.user_id)
        if user is None:
            return Skip("session owner not found")
        if user.is_blocked:
            return HardFail(Unauthorized("Account is blocked"))
        return Success(build_principal(user, "session", admin_uid=self.admin_uid))


class IdentityResolver:
    def __init__(self, strategies: Sequence):
        self.strategies = list(strategies)

    async def resolve(self, request: Request) -> Principal:
        """Principal döner; hiçbir strateji başaramazsa `Unauthenticated`."""
        for strategy in self.strategies:
            outcome = await strategy.authenticate(request)
            if isinstance(outcome, Success):
                return outcome.principal
            if isinstance(outcome, HardFail):
                logger.info("Strategy %s hard-failed: %s", strategy.name, outcome.error.detail)
                raise outcome.error
            logger.debug("Strategy %s skipped: %s", strategy.name, outcome.reason)
        raise Unauthenticated()

    async def resolve_optional(self, request: Request) -> Optional[Principal]:
        try:
            return await self.resolve(request)
        except Unauthenticated:
            return None
