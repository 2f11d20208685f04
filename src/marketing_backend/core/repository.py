"""
Shop persistence.

The OAuth connector and billing controller depend on the ShopRepository
protocol only; the SQLAlchemy implementation below is what the application
wires in, while tests inject in-memory fakes.
"""

import logging
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from marketing_backend.core.errors import DuplicateShopError
from marketing_backend.core.models import Shop, ShopRecord

logger = logging.getLogger("repository")

# Columns callers may write through update(); id and domain are fixed.
UPDATABLE_FIELDS = frozenset(
    {
        "shop_name",
        "access_token",
        "scopes",
        "installed_at",
        "subscription_tier",
        "subscription_status",
        "billing_id",
    }
)


class ShopRepository(Protocol):
    """Persistence contract for shop records."""

    def get(self, shop_id: int) -> Optional[ShopRecord]: ...

    def get_by_domain(self, domain: str) -> Optional[ShopRecord]: ...

    def create(self, shopify_domain: str, **fields: Any) -> ShopRecord:
        """Insert a shop. Raises DuplicateShopError if the domain is already stored."""
        ...

    def update(self, shop_id: int, **fields: Any) -> Optional[ShopRecord]: ...


class SqlAlchemyShopRepository:
    """ShopRepository backed by the `shops` table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, shop_id: int) -> Optional[ShopRecord]:
        with self._session_factory() as db:
            shop = db.get(Shop, shop_id)
            return ShopRecord.model_validate(shop) if shop else None

    def get_by_domain(self, domain: str) -> Optional[ShopRecord]:
        with self._session_factory() as db:
            shop = db.scalars(select(Shop).filter_by(shopify_domain=domain)).first()
            return ShopRecord.model_validate(shop) if shop else None

    def create(self, shopify_domain: str, **fields: Any) -> ShopRecord:
        _check_fields(fields)
        with self._session_factory() as db:
            shop = Shop(shopify_domain=shopify_domain, **fields)
            db.add(shop)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.warning("Shop %s already stored by another request", shopify_domain)
                raise DuplicateShopError(shopify_domain) from e
            logger.info("Created shop %s (id=%s)", shopify_domain, shop.id)
            return ShopRecord.model_validate(shop)

    def update(self, shop_id: int, **fields: Any) -> Optional[ShopRecord]:
        """
        Apply `fields` to a shop inside one transaction.

        The row is locked for the read-modify-write on databases that support
        SELECT ... FOR UPDATE, so two concurrent billing requests cannot
        interleave their writes.
        """
        _check_fields(fields)
        with self._session_factory() as db:
            shop = db.scalars(select(Shop).filter_by(id=shop_id).with_for_update()).first()
            if shop is None:
                return None
            for name, value in fields.items():
                setattr(shop, name, value)
            db.commit()
            return ShopRecord.model_validate(shop)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown shop fields: {', '.join(sorted(unknown))}")
