"""Shared fixtures: in-memory fakes and an app wired to them."""

import itertools
from typing import Any, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketing_backend.core.auth import decode_session_token
from marketing_backend.core.errors import DuplicateShopError
from marketing_backend.core.main import create_app
from marketing_backend.core.models import ShopRecord
from marketing_backend.core.repository import UPDATABLE_FIELDS
from marketing_backend.core.session import InMemorySessionStore
from marketing_backend.core.settings import SESSION_COOKIE_NAME, AppSettings, ShopifySettings
from marketing_backend.plugins.shopify_client import AccessToken, ShopifyClient

TEST_SHOP = "acme.myshopify.com"


class InMemoryShopRepository:
    """ShopRepository fake keeping records in a dict."""

    def __init__(self) -> None:
        self.records: dict[int, ShopRecord] = {}
        self._ids = itertools.count(1)

    def get(self, shop_id: int) -> Optional[ShopRecord]:
        return self.records.get(shop_id)

    def get_by_domain(self, domain: str) -> Optional[ShopRecord]:
        for record in self.records.values():
            if record.shopify_domain == domain:
                return record
        return None

    def create(self, shopify_domain: str, **fields: Any) -> ShopRecord:
        assert set(fields) <= UPDATABLE_FIELDS
        if self.get_by_domain(shopify_domain) is not None:
            raise DuplicateShopError(shopify_domain)
        record = ShopRecord(id=next(self._ids), shopify_domain=shopify_domain, **fields)
        self.records[record.id] = record
        return record

    def update(self, shop_id: int, **fields: Any) -> Optional[ShopRecord]:
        assert set(fields) <= UPDATABLE_FIELDS
        record = self.records.get(shop_id)
        if record is None:
            return None
        record = record.model_copy(update=fields)
        self.records[shop_id] = record
        return record


@pytest.fixture
def shopify_settings() -> ShopifySettings:
    return ShopifySettings(
        api_key="test_api_key",
        api_secret="test_api_secret",
        app_url="https://app.example.com",
        environment="development",
        _env_file=None,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        database_url="sqlite://",
        session_secret="test_secret_key",
        _env_file=None,
    )


@pytest.fixture
def shop_repository() -> InMemoryShopRepository:
    return InMemoryShopRepository()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def mock_client(shopify_settings: ShopifySettings) -> MagicMock:
    """Mocked Shopify client. Authorization URLs are built by the real client."""
    client = MagicMock(spec=ShopifyClient)
    real_client = ShopifyClient(shopify_settings, http=MagicMock())
    client.authorize_url.side_effect = real_client.authorize_url
    client.exchange_token.return_value = AccessToken(access_token="tok1", scope="read_products")
    return client


@pytest.fixture
def app(
    shopify_settings: ShopifySettings,
    app_settings: AppSettings,
    shop_repository: InMemoryShopRepository,
    session_store: InMemorySessionStore,
    mock_client: MagicMock,
) -> FastAPI:
    return create_app(
        settings=shopify_settings,
        app_settings=app_settings,
        shops=shop_repository,
        session_store=session_store,
        client=mock_client,
    )


@pytest.fixture
def api_client(app: FastAPI) -> TestClient:
    return TestClient(app, follow_redirects=False)


def session_id_of(api_client: TestClient, app_settings: AppSettings) -> Optional[str]:
    """The server-side session id behind the client's session cookie."""
    token = api_client.cookies.get(SESSION_COOKIE_NAME)
    return decode_session_token(token, app_settings) if token else None


def start_oauth(api_client: TestClient, shop: str = TEST_SHOP) -> str:
    """Initiate OAuth and return the nonce Shopify would echo back as `state`."""
    response = api_client.get("/api/shopify/auth", params={"shop": shop})
    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers["location"]).query)
    return query["state"][0]


def connect_shop(api_client: TestClient, shop: str = TEST_SHOP, code: str = "abc") -> None:
    """Run the whole OAuth dance so the client's session is bound to `shop`."""
    nonce = start_oauth(api_client, shop)
    response = api_client.get(
        "/api/shopify/callback", params={"code": code, "shop": shop, "state": nonce}
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/app/dashboard"
