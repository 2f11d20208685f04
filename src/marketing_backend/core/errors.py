"""
Exceptions raised by the Shopify connection and billing core.

Each exception carries the HTTP status it is rendered with at the request
boundary, so services can raise them without importing FastAPI.
"""


class MarketingError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidRequestError(MarketingError):
    """Missing or malformed caller input, e.g. an absent shop domain or unknown plan."""

    status_code = 400


class NotAuthenticatedError(MarketingError):
    """The session is not bound to a shop, or the shop lacks the credentials required."""

    status_code = 401


class OAuthStateError(MarketingError):
    """
    Raised when an OAuth callback does not match the nonce and shop domain
    issued to this session.
    """

    status_code = 403

    def __init__(self, message: str = "OAuth state validation failed"):
        super().__init__(message)


class ShopNotFoundError(MarketingError):
    status_code = 404

    def __init__(self, shop_id: int):
        self.shop_id = shop_id
        super().__init__(f"Shop {shop_id} not found")


class UpstreamError(MarketingError):
    """
    Raised when a Shopify API call fails, times out, returns a non-success
    status or a payload missing required fields.
    """

    status_code = 502

    def __init__(self, message: str, original_exception: Exception | None = None):
        self.original_exception = original_exception
        super().__init__(message)


class DuplicateShopError(MarketingError):
    """Raised when a shop with the same domain was stored by another request first."""

    status_code = 409

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"Shop {domain} already exists")
