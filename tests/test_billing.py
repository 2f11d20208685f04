"""Tests for subscription billing."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import TEST_SHOP, InMemoryShopRepository, connect_shop
from marketing_backend.core.errors import InvalidRequestError, UpstreamError
from marketing_backend.core.models import ShopRecord
from marketing_backend.core.settings import ShopifySettings
from marketing_backend.plugins.billing import SUBSCRIPTION_PLANS, BillingController
from marketing_backend.plugins.shopify_client import RecurringCharge, RecurringChargeRequest

CONFIRMATION_URL = (
    "https://acme.myshopify.com/admin/charges/1001/confirm_recurring_application_charge"
)


@pytest.fixture
def connected(api_client: TestClient, shop_repository: InMemoryShopRepository) -> ShopRecord:
    """A client whose session is bound to a freshly installed shop."""
    connect_shop(api_client)
    return shop_repository.get_by_domain(TEST_SHOP)


@pytest.fixture
def premium_shop(
    connected: ShopRecord, shop_repository: InMemoryShopRepository
) -> ShopRecord:
    return shop_repository.update(
        connected.id,
        subscription_tier="premium",
        subscription_status="active",
        billing_id="1001",
    )


def test_plan_catalog() -> None:
    assert set(SUBSCRIPTION_PLANS) == {"basic", "premium"}
    assert SUBSCRIPTION_PLANS["basic"].price == 29.00
    assert SUBSCRIPTION_PLANS["premium"].price == 79.00
    assert all(plan.trial_days == 7 for plan in SUBSCRIPTION_PLANS.values())


def test_subscribe_sets_pending_not_active(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    mock_client.create_recurring_charge.return_value = RecurringCharge(
        id="1001", status="pending", confirmation_url=CONFIRMATION_URL
    )

    response = api_client.post("/api/billing/subscribe", json={"planId": "basic"})

    assert response.status_code == 200
    assert response.json() == {"confirmation_url": CONFIRMATION_URL}

    shop = shop_repository.get(connected.id)
    assert shop.subscription_tier == "basic"
    assert shop.subscription_status == "pending"
    assert shop.subscription_status != "active"
    assert shop.billing_id == "1001"


def test_subscribe_sends_plan_terms(
    api_client: TestClient, mock_client: MagicMock, connected: ShopRecord
) -> None:
    mock_client.create_recurring_charge.return_value = RecurringCharge(
        id="1002", status="pending", confirmation_url=CONFIRMATION_URL
    )

    api_client.post("/api/billing/subscribe", json={"planId": "premium"})

    mock_client.create_recurring_charge.assert_called_once_with(
        TEST_SHOP,
        "tok1",
        RecurringChargeRequest(
            name="Premium Plan",
            price=79.00,
            return_url="https://app.example.com/api/billing/callback",
            trial_days=7,
            test=True,
        ),
    )


def test_unknown_plan_rejected_without_provider_call(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    response = api_client.post("/api/billing/subscribe", json={"planId": "enterprise"})

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid plan"}
    mock_client.create_recurring_charge.assert_not_called()
    assert shop_repository.get(connected.id) == connected


def test_subscribe_requires_connected_shop(api_client: TestClient, mock_client: MagicMock) -> None:
    response = api_client.post("/api/billing/subscribe", json={"planId": "basic"})

    assert response.status_code == 401
    mock_client.create_recurring_charge.assert_not_called()


def test_subscribe_upstream_failure_leaves_shop_unchanged(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    mock_client.create_recurring_charge.side_effect = UpstreamError("Shopify request failed")

    response = api_client.post("/api/billing/subscribe", json={"planId": "basic"})

    assert response.status_code == 502
    assert shop_repository.get(connected.id) == connected


def test_confirm_writes_provider_status(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    shop_repository.update(
        connected.id, subscription_tier="basic", subscription_status="pending", billing_id="1001"
    )
    mock_client.get_recurring_charge.return_value = RecurringCharge(id="1001", status="active")

    response = api_client.get("/api/billing/callback", params={"charge_id": "1001"})

    assert response.status_code == 302
    assert response.headers["location"] == "/app/settings/subscription"
    mock_client.get_recurring_charge.assert_called_once_with(TEST_SHOP, "tok1", "1001")
    shop = shop_repository.get(connected.id)
    assert shop.subscription_status == "active"
    assert shop.subscription_tier == "basic"


def test_confirm_passes_declined_status_through(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    mock_client.get_recurring_charge.return_value = RecurringCharge(id="1001", status="declined")

    api_client.get("/api/billing/callback", params={"charge_id": "1001"})

    assert shop_repository.get(connected.id).subscription_status == "declined"


def test_confirm_failure_redirects_with_error(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    connected: ShopRecord,
) -> None:
    mock_client.get_recurring_charge.side_effect = UpstreamError("timed out")

    response = api_client.get("/api/billing/callback", params={"charge_id": "1001"})

    assert response.status_code == 302
    assert response.headers["location"] == "/app/settings/subscription?error=1"
    assert shop_repository.get(connected.id) == connected


def test_confirm_without_charge_id_redirects_with_error(
    api_client: TestClient, mock_client: MagicMock, connected: ShopRecord
) -> None:
    response = api_client.get("/api/billing/callback")

    assert response.status_code == 302
    assert response.headers["location"] == "/app/settings/subscription?error=1"
    mock_client.get_recurring_charge.assert_not_called()


def test_cancel_resets_to_free_regardless_of_tier(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    premium_shop: ShopRecord,
) -> None:
    response = api_client.post("/api/billing/cancel")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    mock_client.delete_recurring_charge.assert_called_once_with(TEST_SHOP, "tok1", "1001")

    shop = shop_repository.get(premium_shop.id)
    assert shop.subscription_tier == "free"
    assert shop.subscription_status == "canceled"
    assert shop.billing_id is None


def test_cancel_failure_leaves_shop_unchanged(
    api_client: TestClient,
    mock_client: MagicMock,
    shop_repository: InMemoryShopRepository,
    premium_shop: ShopRecord,
) -> None:
    mock_client.delete_recurring_charge.side_effect = UpstreamError("Shopify request failed")

    response = api_client.post("/api/billing/cancel")

    assert response.status_code == 502
    shop = shop_repository.get(premium_shop.id)
    assert shop == premium_shop
    assert shop.model_dump_json() == premium_shop.model_dump_json()


def test_cancel_requires_billing_reference(
    api_client: TestClient, mock_client: MagicMock, connected: ShopRecord
) -> None:
    response = api_client.post("/api/billing/cancel")

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid subscription"}
    mock_client.delete_recurring_charge.assert_not_called()


def test_production_charges_are_not_test_charges(
    shop_repository: InMemoryShopRepository, mock_client: MagicMock
) -> None:
    settings = ShopifySettings(
        api_key="k",
        api_secret="s",
        app_url="https://app.example.com/",
        environment="production",
        _env_file=None,
    )
    shop = shop_repository.create(TEST_SHOP, access_token="tok1")
    mock_client.create_recurring_charge.return_value = RecurringCharge(
        id="77", status="pending", confirmation_url=CONFIRMATION_URL
    )
    controller = BillingController(settings, mock_client, shop_repository)

    assert controller.subscribe(shop, "basic") == CONFIRMATION_URL

    charge = mock_client.create_recurring_charge.call_args.args[2]
    assert charge.test is False
    assert charge.return_url == "https://app.example.com/api/billing/callback"


def test_get_plan_unknown() -> None:
    controller = BillingController(MagicMock(), MagicMock(), MagicMock())
    with pytest.raises(InvalidRequestError):
        controller.get_plan("enterprise")
