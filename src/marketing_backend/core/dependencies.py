"""
Shared providers for the marketing application.

Each provider is built once per process and injected into the components
that need it.
"""

import logging
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .database import create_db_engine, create_session_factory
from .repository import SqlAlchemyShopRepository
from .session import InMemorySessionStore
from .settings import AppSettings, ShopifySettings

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_settings() -> ShopifySettings:
    """
    Get the Shopify settings for the marketing application.
    """
    settings = ShopifySettings()  # Reads Shopify-related vars from .env
    if not settings.api_key or not settings.api_secret:
        logger.warning("Shopify API keys are not set. OAuth flow will not work correctly.")
    logger.info("get_settings returning ShopifySettings with environment: %s", settings.environment)
    return settings


@lru_cache()
def get_app_settings() -> AppSettings:
    """
    Get the database, session and CORS settings.
    """
    return AppSettings()


@lru_cache()
def get_engine() -> Engine:
    return create_db_engine(get_app_settings().database_url)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory(get_engine())


@lru_cache()
def get_shop_repository() -> SqlAlchemyShopRepository:
    """
    Injection method to get the shop repository.
    """
    return SqlAlchemyShopRepository(get_session_factory())


@lru_cache()
def get_session_store() -> InMemorySessionStore:
    """
    Injection method to get the process-wide session store.
    """
    return InMemorySessionStore(max_age=get_app_settings().session_max_age)
