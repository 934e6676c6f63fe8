"""
# phrames/routers/auth.py — Oturum Uçları

## Genel Bilgi
Firebase ID token'ı ile sunucu tarafı oturum açar/kapatır. Oturum kimliği
`session-id` çerezinde (httpOnly, SameSite=Lax) taşınır; sonraki isteklerde
`IdentityResolver` önce bearer token'ı, sonra bu çerezi dener.

---

### POST /auth/session
Authorization: Bearer <ID_TOKEN> zorunlu. Token doğrulanır, `users/{uid}` yoksa
oluşturulur, yeni oturum açılır ve çerez yazılır.

### POST /auth/login
Form-Data e-posta + şifre. Firebase REST API'sine proxy olur, token paketini
döner ve oturum çerezini yazar.

### POST /auth/logout
Çerezdeki oturumu siler ve çerezi temizler. Oturum yoksa da başarılıdır.

### POST /auth/logout-all
Kullanıcının tüm oturumlarını siler.

### GET /auth/me
Çözümlenen Principal.
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response, status
from pydantic import EmailStr
from starlette.concurrency import run_in_threadpool

from phrames.config import Settings
from phrames.core.auth import extract_bearer_token
from phrames.core.errors import InvalidToken
from phrames.core.security import (
    get_principal,
    get_session_store,
    get_settings,
    get_token_verifier,
    get_user_store,
)
from phrames.integrations.identity import VerifiedToken
from phrames.schemas.principal import Principal
from phrames.schemas.session import Session
from phrames.schemas.user import LoginResponse, SessionUserOut, UserRecord

logger = logging.getLogger("phrames.auth")

router = APIRouter(prefix="/auth", tags=["Auth"])


def _set_session_cookie(response: Response, session: Session, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


async def _open_session(verified: VerifiedToken, response: Response, settings: Settings,
                        users, sessions) -> UserRecord:
    user = await run_in_threadpool(
        users.ensure, verified.uid, verified.email, verified.name, verified.email_verified
    )
    if user.is_blocked:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account is blocked")
    session = await run_in_threadpool(sessions.create, user.id)
    _set_session_cookie(response, session, settings)
    logger.info("Session opened for %s", user.id)
    return user


@router.post("/session", response_model=SessionUserOut, summary="Firebase token ile oturum aç")
async def create_session(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    verifier=Depends(get_token_verifier),
    users=Depends(get_user_store),
    sessions=Depends(get_session_store),
):
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "No authentication token provided",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        verified = await verifier.verify(token)
    except InvalidToken:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid authentication token",
                            headers={"WWW-Authenticate": "Bearer"})

    user = await _open_session(verified, response, settings, users, sessions)
    return SessionUserOut(
        id=user.id,
        email=verified.email or user.email,
        display_name=user.display_name,
        is_admin=verified.is_admin_claim or user.is_admin,
        auth_method="bearer",
    )


@router.post("/login", response_model=LoginResponse, summary="E-posta + şifre ile giriş")
async def login(
    request: Request,
    response: Response,
    email: EmailStr = Form(..., description="E-posta"),
    password: str = Form(..., min_length=6, description="Şifre (≥6 kr.)"),
    settings: Settings = Depends(get_settings),
    verifier=Depends(get_token_verifier),
    users=Depends(get_user_store),
    sessions=Depends(get_session_store),
):
    """Form verisiyle Firebase'e proxy olur, id_token + refresh_token döndürür."""
    signin = request.app.state.password_signin
    try:
        data = await signin.sign_in(email, password)
        verified = await verifier.verify(data["idToken"])
    except InvalidToken:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")

    await _open_session(verified, response, settings, users, sessions)
    return LoginResponse(
        id_token=data["idToken"],
        refresh_token=data["refreshToken"],
        expires_in=int(data["expiresIn"]),
        user_id=data["localId"],
    )


@router.post("/logout", summary="Sunucu tarafı oturumu kapat")
async def logout(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    sessions=Depends(get_session_store),
):
    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id:
        await run_in_threadpool(sessions.delete, session_id)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"success": True}


@router.post("/logout-all", summary="Kullanıcının tüm oturumlarını kapat")
async def logout_all(
    response: Response,
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(get_settings),
    sessions=Depends(get_session_store),
):
    removed = await run_in_threadpool(sessions.delete_for_user, principal.uid)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"success": True, "sessions_removed": removed}


@router.get("/me", response_model=SessionUserOut)
async def me(principal: Principal = Depends(get_principal)):
    return SessionUserOut(
        id=principal.uid,
        email=principal.email,
        display_name=principal.display_name,
        is_admin=principal.is_admin,
        auth_method=principal.auth_method,
    )
