"""
# `phrames/main.py` — Uygulama Fabrikası

## Genel Bilgi
`create_app` FastAPI uygulamasını kurar: ayarlar okunur, Firebase açıkça
başlatılır, depolar/servisler oluşturulup `app.state` üzerine konur, router'lar
ve hata işleyicisi eklenir. Modül seviyesinde global istemci yoktur; testler
sahte depoları parametre olarak verir.

---

## Router'lar
- `/auth`      — oturum aç/kapat, `me`
- `/admin`     — yönetici yetkisi verme, oturum iptali
- `/payments`  — Cashfree webhook
- `/health`

---

## Arka Plan Scheduler
- **Kütüphane:** APScheduler (`AsyncIOScheduler`)
- **İş:** süresi dolmuş oturumları silmek (`session_reap_interval_minutes`, 0 ise kapalı)
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from phrames.config import Settings, firestore_client, init_firebase
from phrames.core.auth import BearerTokenStrategy, IdentityResolver, SessionCookieStrategy
from phrames.core.errors import PhramesError
from phrames.integrations.identity import (
    FirebaseClaimsWriter,
    FirebasePasswordSignIn,
    FirebaseTokenVerifier,
)
from phrames.repositories.audit import FirestoreAuditLog
from phrames.repositories.payments import FirestorePaymentLedger
from phrames.repositories.sessions import FirestoreSessionStore
from phrames.repositories.users import FirestoreUserStore
from phrames.routers import admin, auth, payment_webhooks
from phrames.services.admin_grant import AdminGrantGate
from phrames.services.session_reaper import build_scheduler
from phrames.services.webhook_ingest import WebhookIngestPipeline

logger = logging.getLogger("phrames")


async def _phrames_error_handler(request: Request, exc: PhramesError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=headers)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_store=None,
    user_store=None,
    audit_log=None,
    payment_ledger=None,
    token_verifier=None,
    claims_writer=None,
    password_signin=None,
) -> FastAPI:
    settings = settings or Settings()

    firebase_app = None
    db = None
    if any(c is None for c in (session_store, user_store, audit_log, payment_ledger,
                               token_verifier, claims_writer)):
        firebase_app = init_firebase(settings)
        db = firestore_client(firebase_app)

    timeout = settings.storage_timeout_seconds
    session_store = session_store or FirestoreSessionStore(db, settings.session_ttl_seconds, timeout)
    user_store = user_store or FirestoreUserStore(db, timeout)
    audit_log = audit_log or FirestoreAuditLog(db, timeout)
    payment_ledger = payment_ledger or FirestorePaymentLedger(db)
    token_verifier = token_verifier or FirebaseTokenVerifier(firebase_app, settings.token_verify_timeout_seconds)
    claims_writer = claims_writer or FirebaseClaimsWriter(firebase_app, settings.token_verify_timeout_seconds)
    password_signin = password_signin or FirebasePasswordSignIn(
        settings.firebase_web_api_key, settings.signin_timeout_seconds
    )

    app = FastAPI(
        title="Phrames API",
        description="Campaign platform backend: session auth, admin grants and payment webhooks.",
        version="1.0.0",
        redirect_slashes=False,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.user_store = user_store
    app.state.token_verifier = token_verifier
    app.state.password_signin = password_signin
    app.state.identity_resolver = IdentityResolver([
        BearerTokenStrategy(
            token_verifier, user_store,
            admin_uid=settings.admin_uid,
            fallback_on_provider_error=settings.auth_fallback_on_provider_error,
        ),
        SessionCookieStrategy(
            session_store, user_store,
            cookie_name=settings.session_cookie_name,
            admin_uid=settings.admin_uid,
        ),
    ])
    app.state.admin_gate = AdminGrantGate(
        token_verifier, claims_writer, user_store, audit_log,
        policy=settings.admin_grant_policy,
        admin_uid=settings.admin_uid,
    )
    app.state.webhook_pipeline = WebhookIngestPipeline(
        settings.webhook_secret,
        payment_ledger,
        attempts=settings.webhook_apply_attempts,
        base_delay=settings.webhook_retry_base_delay,
    )
    if not settings.cashfree_client_secret:
        logger.warning("CASHFREE_CLIENT_SECRET is not set; every payment webhook will be rejected")

    # CORS: ALLOWED_ORIGINS (comma separated). Cookies are only allowed for an explicit list.
    allow_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()] or ["*"]
    allow_credentials = "*" not in allow_origins
    if not allow_credentials:
        logger.warning("ALLOWED_ORIGINS is '*'; cross-origin requests will not carry the session cookie")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PhramesError, _phrames_error_handler)

    app.include_router(auth.router)
    app.include_router(admin.admin_router)
    app.include_router(payment_webhooks.router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    if settings.session_reap_interval_minutes > 0:
        scheduler = build_scheduler(session_store, settings.session_reap_interval_minutes)

        @app.on_event("startup")
        async def _startup_scheduler():
            if not scheduler.running:
                scheduler.start()

        @app.on_event("shutdown")
        async def _shutdown_scheduler():
            if scheduler.running:
                scheduler.shutdown(wait=False)

    return app


# Run the app directly with uvicorn (for development)
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("phrames.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
