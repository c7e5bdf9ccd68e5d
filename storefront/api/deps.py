from typing import Iterator
from redis import Redis
from sqlalchemy.orm import Session
from storefront.db.session import SessionLocal
from storefront.kafka.producer import publish_order_created
from storefront.services.catalog import CatalogClient, get_catalog  # noqa: F401
from storefront.store.cart_store import get_client
from storefront.core.auth import get_current_identity, get_optional_identity, require_admin  # noqa: F401

def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_redis() -> Redis:
    return get_client()

def get_publisher():
    """Callable that ships an order event to Kafka."""
    return publish_order_created
