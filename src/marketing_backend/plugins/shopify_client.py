"""Shopify HTTP client.

All outbound calls to Shopify go through ShopifyClient: the OAuth token
exchange, recurring application charges and the Admin REST endpoints used by
the gateway routes. Every call is a single attempt with a bounded timeout.
Transport failures, non-2xx responses and payloads missing required fields
are raised as UpstreamError.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from marketing_backend.core.errors import InvalidRequestError, UpstreamError
from marketing_backend.core.settings import ShopifySettings

logger = logging.getLogger("shopify")

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


class AccessToken(BaseModel):
    """Response of the OAuth access token exchange."""

    access_token: str = Field(..., min_length=1)
    scope: str


class RecurringChargeRequest(BaseModel):
    """Payload for creating a recurring application charge."""

    name: str
    price: float
    return_url: str
    trial_days: int = 0
    test: bool = True


class RecurringCharge(BaseModel):
    """A recurring application charge as reported by Shopify."""

    id: str
    status: str = Field(..., min_length=1)
    name: Optional[str] = None
    price: Optional[str] = None
    confirmation_url: Optional[str] = None

    @field_validator("id", "price", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> Any:
        # Shopify sends numeric ids and decimal prices
        if isinstance(value, (int, float)):
            return str(value)
        return value


def normalize_shop_domain(shop: str | None) -> str:
    """
    Reduce merchant input to the canonical `<name>.myshopify.com` form.

    Accepts a bare store name, a full domain, or a URL to the storefront admin.

    Raises:
        InvalidRequestError: If the input is empty or not a myshopify domain.
    """
    if not shop or not shop.strip():
        raise InvalidRequestError("Shop parameter required")

    domain = shop.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = domain.split("/", 1)[0]
    if "." not in domain:
        domain = f"{domain}.myshopify.com"

    if not SHOP_DOMAIN_PATTERN.match(domain):
        raise InvalidRequestError(f"Invalid shop domain: {shop}")
    return domain


class ShopifyClient:
    """Thin client for Shopify's OAuth and Admin REST APIs."""

    def __init__(self, settings: ShopifySettings, http: requests.Session | None = None):
        self.settings = settings
        self.http = http or requests.Session()

    def admin_url(self, shop: str, path: str) -> str:
        return f"https://{shop}/admin/api/{self.settings.api_version}/{path.lstrip('/')}"

    def authorize_url(self, shop: str, nonce: str) -> str:
        """URL of Shopify's app authorization screen for `shop`."""
        query = urlencode(
            {
                "client_id": self.settings.api_key,
                "scope": self.settings.scopes,
                "redirect_uri": self.settings.callback_url,
                "state": nonce,
            }
        )
        return f"https://{shop}/admin/oauth/authorize?{query}"

    def exchange_token(self, shop: str, code: str) -> AccessToken:
        """Exchange an authorization code for a permanent access token."""
        payload = self._send(
            "POST",
            f"https://{shop}/admin/oauth/access_token",
            json={
                "client_id": self.settings.api_key,
                "client_secret": self.settings.api_secret,
                "code": code,
            },
        )
        try:
            return AccessToken.model_validate(payload)
        except ValidationError as e:
            logger.error("Malformed token exchange response for %s: %s", shop, e)
            raise UpstreamError("Shopify returned an invalid access token response", e) from e

    def rest(
        self,
        shop: str,
        access_token: str,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Call an Admin REST endpoint with the shop's access token."""
        return self._send(
            method,
            self.admin_url(shop, path),
            headers={"X-Shopify-Access-Token": access_token},
            json=json,
            params=params,
        )

    def create_recurring_charge(
        self, shop: str, access_token: str, charge: RecurringChargeRequest
    ) -> RecurringCharge:
        payload = self.rest(
            shop,
            access_token,
            "POST",
            "recurring_application_charges.json",
            json={"recurring_application_charge": charge.model_dump()},
        )
        created = self._parse_charge(payload)
        if not created.confirmation_url:
            raise UpstreamError("Shopify charge response is missing confirmation_url")
        return created

    def get_recurring_charge(self, shop: str, access_token: str, charge_id: str) -> RecurringCharge:
        payload = self.rest(
            shop, access_token, "GET", f"recurring_application_charges/{charge_id}.json"
        )
        return self._parse_charge(payload)

    def delete_recurring_charge(self, shop: str, access_token: str, charge_id: str) -> None:
        self.rest(shop, access_token, "DELETE", f"recurring_application_charges/{charge_id}.json")

    @staticmethod
    def _parse_charge(payload: dict) -> RecurringCharge:
        try:
            return RecurringCharge.model_validate(payload.get("recurring_application_charge"))
        except ValidationError as e:
            logger.error("Malformed recurring charge response: %s", e)
            raise UpstreamError("Shopify returned an invalid recurring charge response", e) from e

    def _send(
        self,
        method: str,
        url: str,
        headers: dict | None = None,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
        request_headers.update(headers or {})

        try:
            response = self.http.request(
                method,
                url,
                headers=request_headers,
                json=json,
                params=params,
                timeout=self.settings.request_timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            logger.error("Shopify %s %s failed with status %s", method, url, status_code)
            raise UpstreamError(f"Shopify request failed with status {status_code}", e) from e
        except requests.RequestException as e:
            logger.error("Shopify %s %s failed: %s", method, url, e)
            raise UpstreamError(f"Shopify request failed: {e}", e) from e

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError("Shopify returned a non-JSON response", e) from e
        if not isinstance(body, dict):
            raise UpstreamError("Shopify returned an unexpected response body")
        return body
