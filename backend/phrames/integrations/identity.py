"""
phrames/integrations/identity.py - Firebase Authentication integration.

Wraps the blocking firebase_admin calls used by the auth core:
- ID token verification (with revocation check) bounded by a timeout,
- custom-claim writes for the admin grant,
- e-mail/password sign-in through the Firebase REST API (httpx).

Every call runs off the event loop and is bounded; a timeout is reported as
`UpstreamUnavailable`, never as a hang.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import firebase_admin
import httpx
from firebase_admin import auth as fb_auth
from firebase_admin import exceptions as fb_exceptions
from starlette.concurrency import run_in_threadpool

from phrames.core.errors import BadRequest, InvalidToken, UpstreamUnavailable

logger = logging.getLogger("phrames.auth")

FIREBASE_SIGNIN_ENDPOINT = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"


@dataclass(frozen=True)
class VerifiedToken:
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_verified: bool = False
    claims: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_admin_claim(self) -> bool:
        return self.claims.get("isAdmin") is True

    @classmethod
    def from_decoded(cls, decoded: Dict[str, Any]) -> "VerifiedToken":
        uid = decoded.get("uid") or decoded.get("user_id")
        if not uid:
            raise InvalidToken("Token missing uid")
        return cls(
            uid=uid,
            email=decoded.get("email"),
            name=decoded.get("name"),
            email_verified=bool(decoded.get("email_verified")),
            claims=dict(decoded),
        )


async def _bounded(fn, timeout: float, *args, **kwargs):
    try:
        return await asyncio.wait_for(run_in_threadpool(fn, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError:
        raise UpstreamUnavailable("Identity provider timed out")


class FirebaseTokenVerifier:
    """`verify(token) -> VerifiedToken`; InvalidToken ya da UpstreamUnavailable fırlatır."""

    def __init__(self, app: Optional[firebase_admin.App] = None, timeout: float = 5.0,
                 check_revoked: bool = True):
        self._app = app
        self.timeout = timeout
        self.check_revoked = check_revoked

    def _verify_sync(self, token: str) -> Dict[str, Any]:
        try:
            return fb_auth.verify_id_token(token, app=self._app, check_revoked=self.check_revoked)
        except (fb_auth.InvalidIdTokenError, fb_auth.UserDisabledError) as exc:
            # Expired/Revoked da InvalidIdTokenError alt sınıfı.
            raise InvalidToken(type(exc).__name__)
        except fb_auth.CertificateFetchError as exc:
            raise UpstreamUnavailable(f"Certificate fetch failed: {type(exc).__name__}")
        except ValueError as exc:
            # boş / str olmayan token
            raise InvalidToken(str(exc))
        except fb_exceptions.FirebaseError as exc:
            raise UpstreamUnavailable(f"Firebase error: {exc.code}")

    async def verify(self, token: str) -> VerifiedToken:
        if not token:
            raise InvalidToken("Empty token")
        decoded = await _bounded(self._verify_sync, self.timeout, token)
        return VerifiedToken.from_decoded(decoded)


class FirebaseClaimsWriter:
    """Hedef kullanıcının custom claim'lerine `isAdmin: true` ekler (mevcut claim'ler korunur)."""

    def __init__(self, app: Optional[firebase_admin.App] = None, timeout: float = 10.0):
        self._app = app
        self.timeout = timeout

    def _grant_sync(self, uid: str) -> None:
        try:
            user = fb_auth.get_user(uid, app=self._app)
        except fb_auth.UserNotFoundError:
            raise BadRequest("Unknown userId")
        except fb_exceptions.FirebaseError as exc:
            raise UpstreamUnavailable(f"Failed to read user: {exc.code}", status_code=502)
        claims = dict(user.custom_claims or {})
        claims["isAdmin"] = True
        try:
            fb_auth.set_custom_user_claims(uid, claims, app=self._app)
        except fb_exceptions.FirebaseError as exc:
            raise UpstreamUnavailable(f"Failed to set admin claim: {exc.code}", status_code=502)

    async def grant_admin(self, uid: str) -> None:
        try:
            await _bounded(self._grant_sync, self.timeout, uid)
        except UpstreamUnavailable as exc:
            exc.status_code = 502
            raise


class FirebasePasswordSignIn:
    """E-posta + şifre ile Firebase REST girişi; başarılıysa idToken paketini döner."""

    def __init__(self, api_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        if not self.api_key:
            raise UpstreamUnavailable("Server misconfigured: missing FIREBASE_WEB_API_KEY")
        payload = {"email": email, "password": password, "returnSecureToken": True}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(FIREBASE_SIGNIN_ENDPOINT, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("signInWithPassword failed: %s", type(exc).__name__)
            raise UpstreamUnavailable("Sign-in service unavailable")

        if resp.status_code == 200:
            return resp.json()
        if 400 <= resp.status_code < 500:
            try:
                message = resp.json().get("error", {}).get("message", "INVALID_LOGIN_CREDENTIALS")
            except ValueError:
                message = "INVALID_LOGIN_CREDENTIALS"
            logger.info("Firebase login rejected: %s", message)
            raise InvalidToken(message)
        raise UpstreamUnavailable(f"Sign-in service returned {resp.status_code}")
