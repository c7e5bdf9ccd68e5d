"""Per-user shopping cart kept in Redis.

Prices in the cart are display snapshots taken when a product is added;
checkout always re-prices from the catalog.
"""

from dataclasses import dataclass
from decimal import Decimal

import structlog
from redis import Redis

from storefront.core.errors import NotFoundError, ProductNotFound, ValidationError
from storefront.services.catalog import CatalogClient
from storefront.services.pricing import cart_summary
from storefront.store import cart_store

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _Line:
    price: Decimal
    quantity: int


def view(r: Redis, user_id: str) -> dict:
    items = cart_store.get_items(user_id, r)
    summary = cart_summary([_Line(Decimal(str(it["price"])), int(it["quantity"])) for it in items])
    return {
        "items": items,
        "item_count": len(items),
        "subtotal": summary.subtotal,
        "shipping": summary.shipping,
        "tax": summary.tax,
        "total": summary.total,
        "amount_for_free_shipping": summary.amount_for_free_shipping,
        "free_shipping_threshold": summary.free_shipping_threshold,
        "message": summary.message,
    }


def add_item(r: Redis, catalog: CatalogClient, user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product = catalog.find_product(product_id)
    if product is None:
        raise ProductNotFound(product_id)

    item = cart_store.merge_item(user_id, {
        "product_id": product.id,
        "quantity": quantity,
        "name": product.name,
        "price": str(product.price),
        "image": product.image,
    }, r)
    logger.info("Cart item added", user_id=user_id, product_id=product.id, quantity=item["quantity"])
    return view(r, user_id)


def update_item(r: Redis, user_id: str, product_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    item = cart_store.get_item(user_id, product_id, r)
    if not item:
        raise NotFoundError("Item not in cart")
    item["quantity"] = quantity
    cart_store.put_item(user_id, item, r)
    return view(r, user_id)


def remove_item(r: Redis, user_id: str, product_id: str) -> dict:
    if not cart_store.delete_item(user_id, product_id, r):
        raise NotFoundError("Item not in cart")
    return view(r, user_id)


def clear(r: Redis, user_id: str) -> dict:
    cart_store.clear_cart(user_id, r)
    return view(r, user_id)
