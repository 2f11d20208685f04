"""Shopify plugin module.

This module provides the Shopify connection for the marketing backend: the
OAuth authorization-code flow that installs the app on a merchant's store,
the connection status endpoints, and a thin authenticated gateway to the
Shopify Admin API (products, customers, orders, webhook registration).

The OAuth flow runs Unconnected -> NonceIssued -> TokenExchanged -> Bound.
Initiation stores a random nonce and the shop domain in the session; the
callback must present both unchanged before any token exchange happens.
"""

import hmac
import logging
import secrets
from datetime import UTC, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from marketing_backend.core.auth import get_session_context, require_shop
from marketing_backend.core.errors import (
    DuplicateShopError,
    InvalidRequestError,
    NotAuthenticatedError,
    OAuthStateError,
    ShopNotFoundError,
    UpstreamError,
)
from marketing_backend.core.models import (
    ConnectionStatus,
    ShopInfo,
    ShopRecord,
    ShopSummary,
    SubscriptionStatus,
    SubscriptionTier,
    WebhookRequest,
)
from marketing_backend.core.repository import ShopRepository
from marketing_backend.core.session import SessionContext
from marketing_backend.core.settings import ShopifySettings
from marketing_backend.plugins.shopify_client import ShopifyClient, normalize_shop_domain

logger = logging.getLogger("shopify")

DASHBOARD_ROUTE = "/app/dashboard"
CONNECT_ERROR_ROUTE = "/app/connect?error=1"


class ShopifyOAuthConnector:
    """Drives the Shopify OAuth flow and binds the installed shop to the session."""

    def __init__(self, settings: ShopifySettings, client: ShopifyClient, shops: ShopRepository):
        self.settings = settings
        self.client = client
        self.shops = shops

    def initiate(self, session: SessionContext, shop: str) -> str:
        """
        Issue a nonce for `shop` and return Shopify's authorization URL.

        Args:
            session (SessionContext): The browser session driving the flow.
            shop (str): Canonical *.myshopify.com domain.

        Returns:
            str: The authorization URL carrying the nonce as `state`.

        Raises:
            InvalidRequestError: If no shop domain is given.
        """
        if not shop:
            raise InvalidRequestError("Shop parameter required")

        nonce = secrets.token_hex(16)
        session.begin_oauth(nonce, shop)
        logger.info("Issued OAuth nonce for shop %s (scopes=%s)", shop, self.settings.scopes)
        return self.client.authorize_url(shop, nonce)

    def validate_callback(
        self, session: SessionContext, shop: str | None, state: str | None
    ) -> str:
        """
        Check the callback against the nonce and domain issued to this session,
        then consume the nonce so the same callback cannot be replayed.

        Returns:
            str: The validated shop domain.

        Raises:
            OAuthStateError: If either value does not match.
        """
        expected_nonce, expected_shop = session.oauth_state
        if (
            not expected_nonce
            or not state
            or not hmac.compare_digest(state.encode(), expected_nonce.encode())
        ):
            logger.warning("OAuth callback rejected: state mismatch for shop %s", shop)
            raise OAuthStateError()
        if not expected_shop or shop != expected_shop:
            logger.warning("OAuth callback rejected: shop %s was not the one authorized", shop)
            raise OAuthStateError()

        session.clear_oauth()
        return expected_shop

    def complete(
        self, session: SessionContext, code: str | None, shop: str | None, state: str | None
    ) -> ShopRecord:
        """
        Handle Shopify's redirect back to the app.

        Validates the state, exchanges the authorization code for an access
        token, creates or refreshes the Shop record and binds it to the session.

        Raises:
            OAuthStateError: If the callback does not belong to this session's flow.
            InvalidRequestError: If the authorization code is missing.
            UpstreamError: If the token exchange fails. Not retried.
        """
        shop = self.validate_callback(session, shop, state)
        if not code:
            raise InvalidRequestError("Authorization code required")

        logger.info("Exchanging authorization code %s... for shop %s", code[:5], shop)
        token = self.client.exchange_token(shop, code)

        record = self._persist(shop, token.access_token, token.scope)
        session.bind_shop(record.id)
        logger.info("Shop %s (id=%s) bound to session", shop, record.id)
        return record

    def _persist(self, shop: str, access_token: str, scopes: str) -> ShopRecord:
        now = datetime.now(UTC)
        existing = self.shops.get_by_domain(shop)
        if existing:
            return self._refresh(existing, access_token, scopes, now)

        logger.info("Creating new shop: %s", shop)
        try:
            return self.shops.create(
                shop,
                shop_name=shop,
                access_token=access_token,
                scopes=scopes,
                installed_at=now,
                subscription_tier=SubscriptionTier.FREE.value,
                subscription_status=SubscriptionStatus.ACTIVE.value,
            )
        except DuplicateShopError:
            # A concurrent callback installed the same shop first
            existing = self.shops.get_by_domain(shop)
            if existing is None:
                raise
            return self._refresh(existing, access_token, scopes, now)

    def _refresh(
        self, existing: ShopRecord, access_token: str, scopes: str, now: datetime
    ) -> ShopRecord:
        # Re-authorization: refresh credentials only, keep the subscription
        logger.info("Updating existing shop: %s", existing.shopify_domain)
        updated = self.shops.update(
            existing.id, access_token=access_token, scopes=scopes, installed_at=now
        )
        if updated is None:
            raise ShopNotFoundError(existing.id)
        return updated

    def status(self, session: SessionContext) -> ConnectionStatus:
        """Report whether the session is bound to a shop, without credentials."""
        shop_id = session.shop_id
        if shop_id is None:
            return ConnectionStatus(connected=False)

        shop = self.shops.get(shop_id)
        summary = ShopSummary(domain=shop.shopify_domain, name=shop.shop_name) if shop else None
        return ConnectionStatus(connected=True, shop=summary)

    def shop_info(self, session: SessionContext) -> ShopInfo:
        shop_id = session.shop_id
        if shop_id is None:
            raise NotAuthenticatedError("Not authenticated with a Shopify store")

        shop = self.shops.get(shop_id)
        if shop is None:
            raise ShopNotFoundError(shop_id)
        return ShopInfo.from_record(shop)


def create_shopify_router(
    connector: ShopifyOAuthConnector,
    client: ShopifyClient,
    settings: ShopifySettings,
) -> APIRouter:
    """Create a router for the Shopify connection and Admin API gateway."""

    router = APIRouter()
    current_shop = require_shop(connector.shops)

    @router.get("/auth")
    async def initiate_oauth(
        shop: Optional[str] = None,
        session: SessionContext = Depends(get_session_context),
    ) -> RedirectResponse:
        """Initiate OAuth flow."""
        domain = normalize_shop_domain(shop)
        auth_url = connector.initiate(session, domain)
        return RedirectResponse(auth_url, status_code=302)

    @router.get("/callback")
    def oauth_callback(
        code: Optional[str] = None,
        shop: Optional[str] = None,
        state: Optional[str] = None,
        session: SessionContext = Depends(get_session_context),
    ) -> RedirectResponse:
        """
        Handle OAuth callback from Shopify.

        State mismatches are rejected with 403 before any call to Shopify.
        A failed token exchange sends the merchant back to the connect page
        with an error flag so they can start again.
        """
        logger.info("OAuth callback received: shop=%s", shop)
        try:
            connector.complete(session, code, shop, state)
        except UpstreamError as e:
            logger.error("OAuth token exchange failed for %s: %s", shop, e.message)
            return RedirectResponse(CONNECT_ERROR_ROUTE, status_code=302)

        return RedirectResponse(DASHBOARD_ROUTE, status_code=302)

    @router.get("/shop", response_model=ShopInfo)
    def get_shop(session: SessionContext = Depends(get_session_context)) -> ShopInfo:
        """Get shop info without sensitive data."""
        return connector.shop_info(session)

    @router.get("/status", response_model=ConnectionStatus)
    def connection_status(
        session: SessionContext = Depends(get_session_context),
    ) -> ConnectionStatus:
        """Check connection status."""
        return connector.status(session)

    @router.get("/products")
    def list_products(
        limit: int = Query(10, ge=1, le=250),
        shop: ShopRecord = Depends(current_shop),
    ) -> dict:
        """Fetch products from the connected store."""
        return client.rest(
            shop.shopify_domain, shop.access_token, "GET", "products.json", params={"limit": limit}
        )

    @router.get("/customers")
    def list_customers(
        limit: int = Query(10, ge=1, le=250),
        shop: ShopRecord = Depends(current_shop),
    ) -> dict:
        """Fetch customers from the connected store."""
        return client.rest(
            shop.shopify_domain, shop.access_token, "GET", "customers.json", params={"limit": limit}
        )

    @router.get("/orders")
    def list_orders(
        limit: int = Query(10, ge=1, le=250),
        shop: ShopRecord = Depends(current_shop),
    ) -> dict:
        """Fetch orders in any status from the connected store."""
        return client.rest(
            shop.shopify_domain,
            shop.access_token,
            "GET",
            "orders.json",
            params={"limit": limit, "status": "any"},
        )

    @router.post("/webhooks")
    def create_webhook(
        webhook: WebhookRequest,
        shop: ShopRecord = Depends(current_shop),
    ) -> dict:
        """Register a webhook pointing back at this app."""
        if not webhook.topic:
            raise InvalidRequestError("Topic is required")

        logger.info("Registering webhook %s for shop %s", webhook.topic, shop.shopify_domain)
        return client.rest(
            shop.shopify_domain,
            shop.access_token,
            "POST",
            "webhooks.json",
            json={
                "webhook": {
                    "topic": webhook.topic,
                    "address": settings.webhook_address,
                    "format": "json",
                }
            },
        )

    return router
