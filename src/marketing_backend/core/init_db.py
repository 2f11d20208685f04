"""Initialize the database tables."""

import logging

from marketing_backend.core import models  # noqa: F401  registers the Shop table
from marketing_backend.core.database import Base
from marketing_backend.core.dependencies import get_engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("database")

logger.info("Creating database tables...")
Base.metadata.create_all(bind=get_engine())
logger.info("Tables created successfully!")
