"""
phrames/config.py - Application configuration and Firebase initialization.

Settings are loaded from the environment (and `.env`) through pydantic-settings.
Firebase is NOT initialised at import time: `create_app` calls `init_firebase`
explicitly and hands the resulting Firestore client to the stores it builds.
"""
from typing import Literal, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

AdminGrantPolicy = Literal["open", "require_admin", "bootstrap"]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    firebase_cred_file: str = 'firebase_service_account.json'
    firebase_project_id: Optional[str] = None

    # Firebase credentials from environment variables (for Cloud Run)
    firebase_private_key_id: Optional[str] = None
    firebase_private_key: Optional[str] = None
    firebase_client_email: Optional[str] = None
    firebase_client_id: Optional[str] = None
    firebase_auth_uri: Optional[str] = None
    firebase_token_uri: Optional[str] = None
    firebase_auth_provider_x509_cert_url: Optional[str] = None
    firebase_client_x509_cert_url: Optional[str] = None
    firebase_web_api_key: str = ''

    # Cashfree signs webhooks with the client secret.
    cashfree_client_secret: str = ''
    webhook_apply_attempts: int = Field(3, ge=1)
    webhook_retry_base_delay: float = Field(0.2, ge=0)

    admin_uid: Optional[str] = None
    admin_grant_policy: AdminGrantPolicy = "require_admin"

    auth_fallback_on_provider_error: bool = True
    token_verify_timeout_seconds: float = Field(5.0, gt=0)
    storage_timeout_seconds: float = Field(10.0, gt=0)
    signin_timeout_seconds: float = Field(10.0, gt=0)

    session_ttl_days: int = Field(30, ge=1)
    session_cookie_name: str = "session-id"
    cookie_secure: bool = True
    session_reap_interval_minutes: int = Field(60, ge=0)  # 0 disables the reaper

    debug: bool = False
    allowed_origins: str = '*'  # Comma-separated list; '*' disables credentialed CORS

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    @property
    def webhook_secret(self) -> bytes:
        return self.cashfree_client_secret.encode("utf-8")


def _credential(settings: Settings) -> credentials.Certificate:
    # Check if we have environment variables for Firebase credentials (Cloud Run)
    if all([
        settings.firebase_private_key_id,
        settings.firebase_private_key,
        settings.firebase_client_email,
        settings.firebase_client_id,
        settings.firebase_auth_uri,
        settings.firebase_token_uri,
        settings.firebase_auth_provider_x509_cert_url,
        settings.firebase_client_x509_cert_url,
    ]):
        return credentials.Certificate({
            "type": "service_account",
            "project_id": settings.firebase_project_id,
            "private_key_id": settings.firebase_private_key_id,
            "private_key": settings.firebase_private_key.replace("\\n", "\n"),
            "client_email": settings.firebase_client_email,
            "client_id": settings.firebase_client_id,
            "auth_uri": settings.firebase_auth_uri,
            "token_uri": settings.firebase_token_uri,
            "auth_provider_x509_cert_url": settings.firebase_auth_provider_x509_cert_url,
            "client_x509_cert_url": settings.firebase_client_x509_cert_url,
        })
    # Use service account file (local development)
    return credentials.Certificate(settings.firebase_cred_file)


def init_firebase(settings: Settings) -> firebase_admin.App:
    """Initialise the default Firebase app once; later calls return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    options = {'projectId': settings.firebase_project_id} if settings.firebase_project_id else None
    return firebase_admin.initialize_app(_credential(settings), options)


def firestore_client(app: firebase_admin.App):
    """Firestore client bound to the given Firebase app."""
    return firestore.client(app)
