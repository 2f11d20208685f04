"""Billing plugin module.

Recurring subscriptions for connected shops, billed through Shopify's
recurring application charges. A subscription is created as `pending` and only
becomes active when Shopify reports the merchant's approval through the
billing callback. Local state changes only after Shopify confirms the call.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from marketing_backend.core.auth import require_shop
from marketing_backend.core.errors import (
    InvalidRequestError,
    MarketingError,
    NotAuthenticatedError,
    ShopNotFoundError,
)
from marketing_backend.core.models import (
    ShopRecord,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionStatus,
    SubscriptionTier,
)
from marketing_backend.core.repository import ShopRepository
from marketing_backend.core.settings import ShopifySettings
from marketing_backend.plugins.shopify_client import RecurringChargeRequest, ShopifyClient

logger = logging.getLogger("billing")

SUBSCRIPTION_PAGE = "/app/settings/subscription"
SUBSCRIPTION_ERROR_PAGE = f"{SUBSCRIPTION_PAGE}?error=1"


class SubscriptionPlan(BaseModel):
    """A plan from the static catalog."""

    name: str
    price: float
    trial_days: int


SUBSCRIPTION_PLANS: dict[str, SubscriptionPlan] = {
    SubscriptionTier.BASIC.value: SubscriptionPlan(name="Basic Plan", price=29.00, trial_days=7),
    SubscriptionTier.PREMIUM.value: SubscriptionPlan(
        name="Premium Plan", price=79.00, trial_days=7
    ),
}


class BillingController:
    """Creates, confirms and cancels a shop's recurring charge."""

    def __init__(self, settings: ShopifySettings, client: ShopifyClient, shops: ShopRepository):
        self.settings = settings
        self.client = client
        self.shops = shops

    def get_plan(self, plan_id: str) -> SubscriptionPlan:
        plan = SUBSCRIPTION_PLANS.get(plan_id)
        if plan is None:
            raise InvalidRequestError("Invalid plan")
        return plan

    def subscribe(self, shop: ShopRecord, plan_id: str) -> str:
        """
        Create a recurring charge for `plan_id`.

        Returns:
            str: The confirmation URL the merchant must visit to approve the charge.

        Raises:
            InvalidRequestError: If the plan is not in the catalog.
            UpstreamError: If Shopify rejects the charge.
        """
        plan = self.get_plan(plan_id)
        charge = self.client.create_recurring_charge(
            shop.shopify_domain,
            shop.access_token,
            RecurringChargeRequest(
                name=plan.name,
                price=plan.price,
                return_url=self.settings.billing_return_url,
                trial_days=plan.trial_days,
                test=not self.settings.is_production,
            ),
        )
        logger.info("Created charge %s (%s) for shop %s", charge.id, plan_id, shop.shopify_domain)

        updated = self.shops.update(
            shop.id,
            billing_id=charge.id,
            subscription_tier=plan_id,
            subscription_status=SubscriptionStatus.PENDING.value,
        )
        if updated is None:
            raise ShopNotFoundError(shop.id)
        return charge.confirmation_url

    def confirm(self, shop: ShopRecord, charge_id: str) -> str:
        """Store the charge's current Shopify status on the shop and return it."""
        if not charge_id:
            raise InvalidRequestError("charge_id required")

        charge = self.client.get_recurring_charge(shop.shopify_domain, shop.access_token, charge_id)
        if self.shops.update(shop.id, subscription_status=charge.status) is None:
            raise ShopNotFoundError(shop.id)

        logger.info(
            "Charge %s for shop %s is now %s", charge_id, shop.shopify_domain, charge.status
        )
        return charge.status

    def cancel(self, shop: ShopRecord) -> ShopRecord:
        """
        Cancel the shop's recurring charge and drop it back to the free tier.

        Raises:
            NotAuthenticatedError: If the shop has no token or no billing reference.
            UpstreamError: If Shopify fails to delete the charge; the shop is
                left unchanged.
        """
        if not shop.access_token or not shop.billing_id:
            raise NotAuthenticatedError("Invalid subscription")

        self.client.delete_recurring_charge(shop.shopify_domain, shop.access_token, shop.billing_id)
        logger.info("Canceled charge %s for shop %s", shop.billing_id, shop.shopify_domain)

        updated = self.shops.update(
            shop.id,
            subscription_tier=SubscriptionTier.FREE.value,
            subscription_status=SubscriptionStatus.CANCELED.value,
            billing_id=None,
        )
        if updated is None:
            raise ShopNotFoundError(shop.id)
        return updated


def create_billing_router(controller: BillingController) -> APIRouter:
    """Create a router for subscription billing."""

    router = APIRouter()
    current_shop = require_shop(controller.shops)

    @router.post("/subscribe", response_model=SubscribeResponse)
    def subscribe(
        request: SubscribeRequest,
        shop: ShopRecord = Depends(current_shop),
    ) -> SubscribeResponse:
        """Create a subscription and return the URL where the merchant approves it."""
        confirmation_url = controller.subscribe(shop, request.plan_id)
        return SubscribeResponse(confirmation_url=confirmation_url)

    @router.get("/callback")
    def subscription_callback(
        charge_id: Optional[str] = None,
        shop: ShopRecord = Depends(current_shop),
    ) -> RedirectResponse:
        """
        Handle Shopify's redirect after the merchant approves or declines.

        The merchant is mid-redirect, so failures land on the subscription
        page with an error flag instead of a JSON error.
        """
        try:
            controller.confirm(shop, charge_id or "")
        except MarketingError as e:
            logger.error("Subscription callback error for %s: %s", shop.shopify_domain, e.message)
            return RedirectResponse(SUBSCRIPTION_ERROR_PAGE, status_code=302)

        return RedirectResponse(SUBSCRIPTION_PAGE, status_code=302)

    @router.post("/cancel")
    def cancel(shop: ShopRecord = Depends(current_shop)) -> dict:
        """Cancel the active subscription."""
        controller.cancel(shop)
        return {"success": True}

    return router
