import base64
import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger("phrames.webhooks")

SESSION_ID_BYTES = 32


def compute_signature(raw_payload: bytes, timestamp: str, secret: bytes) -> str:
    """Cashfree imzası: base64(HMAC-SHA256(secret, timestamp + raw_body))."""
    message = timestamp.encode("utf-8") + raw_payload
    digest = hmac.new(secret, message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_payload: bytes, timestamp: str, provided_signature: str, secret: bytes) -> bool:
    """
    Webhook imzasını sabit zamanlı karşılaştırma ile doğrular.
    Hiçbir durumda exception fırlatmaz; eksik secret da sahte imza da `False` döner.
    """
    try:
        if not secret or not provided_signature or timestamp is None:
            return False
        expected = compute_signature(raw_payload, timestamp, secret)
        return hmac.compare_digest(expected.encode("ascii"), provided_signature.encode("utf-8"))
    except Exception:
        logger.debug("Signature verification raised; treating as invalid", exc_info=True)
        return False


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


def digest_key(value: str) -> str:
    """Firestore doküman id'si olarak kullanılacak sha256 hex özet."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
