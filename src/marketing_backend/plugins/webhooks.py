"""Inbound Shopify webhooks."""

import base64
import hashlib
import hmac
import logging

from fastapi import APIRouter, Header, Request

from marketing_backend.core.errors import NotAuthenticatedError
from marketing_backend.core.settings import ShopifySettings

logger = logging.getLogger("webhooks")


def verify_hmac(secret: str, hmac_header: str | None, body: bytes) -> bool:
    """Check Shopify's base64 HMAC-SHA256 signature of the raw request body."""
    if not secret or not hmac_header:
        return False
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    calc_hmac = base64.b64encode(digest).decode()
    return hmac.compare_digest(calc_hmac.encode(), hmac_header.encode())


def create_webhook_router(settings: ShopifySettings) -> APIRouter:
    """Create a router receiving Shopify webhook deliveries."""

    router = APIRouter()

    @router.post("")
    async def receive_webhook(
        request: Request,
        x_shopify_hmac_sha256: str | None = Header(None),
        x_shopify_topic: str | None = Header(None),
        x_shopify_shop_domain: str | None = Header(None),
    ) -> dict:
        """Verify and acknowledge a webhook delivery."""
        raw_body = await request.body()

        if not verify_hmac(settings.api_secret, x_shopify_hmac_sha256, raw_body):
            logger.warning("Invalid HMAC on webhook from %s", x_shopify_shop_domain)
            raise NotAuthenticatedError("Invalid HMAC signature")

        logger.info(
            "Webhook received: topic=%s shop=%s bytes=%d",
            x_shopify_topic,
            x_shopify_shop_domain,
            len(raw_body),
        )
        return {"status": "ok"}

    return router
