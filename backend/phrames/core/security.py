"""
# `phrames/core/security.py` — FastAPI kimlik bağımlılıkları

Endpoint'lerde `Depends(...)` ile kullanılır. Servisler modül seviyesinde
global değil, `create_app` tarafından `app.state` üzerine kurulur; bağımlılıklar
onları istekten okur.

| Bağımlılık               | Davranış |
|--------------------------|----------|
| `get_principal`          | Principal döner, yoksa 401 |
| `require_admin`          | Principal yönetici değilse 403 |
"""
from fastapi import Depends, Request

from phrames.config import Settings
from phrames.core.auth import IdentityResolver
from phrames.core.errors import Unauthorized
from phrames.schemas.principal import Principal


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver


def get_session_store(request: Request):
    return request.app.state.session_store


def get_user_store(request: Request):
    return request.app.state.user_store


def get_token_verifier(request: Request):
    return request.app.state.token_verifier


async def get_principal(request: Request,
                        resolver: IdentityResolver = Depends(get_resolver)) -> Principal:
    """Token ya da oturum zorunlu."""
    return await resolver.resolve(request)


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """
    Sadece admin kullanıcıları kabul eder.
    """
    if not principal.is_admin:
        raise Unauthorized("Admin privilege required.")
    return principal
