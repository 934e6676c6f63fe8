# phrames/routers/payment_webhooks.py
"""
Cashfree ödeme webhook'u. Çerez/token ile kimlik doğrulaması yapılmaz; tek kanıt
`x-webhook-signature` + `x-webhook-timestamp` başlıklarıyla gelen HMAC imzasıdır.
Gövde ham bayt olarak okunur; JSON'a çevrilip yeniden yazılmaz.
"""
from fastapi import APIRouter, Header, Request

from phrames.schemas.webhook import IngestResult

router = APIRouter(prefix="/payments", tags=["Payment Webhooks"])


@router.post("/webhook", response_model=IngestResult)
async def cashfree_webhook(
    request: Request,
    x_webhook_signature: str | None = Header(None),
    x_webhook_timestamp: str | None = Header(None),
):
    raw_body = await request.body()
    pipeline = request.app.state.webhook_pipeline
    return await pipeline.ingest(raw_body, x_webhook_signature, x_webhook_timestamp)
