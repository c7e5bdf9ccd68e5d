from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional
import re
from urllib.parse import quote
import httpx
from storefront.core.config import settings
from storefront.core.errors import DependencyError

_PRICE_NOISE = re.compile(r"[^\d.\-]")

@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: Decimal
    image: Optional[str] = None

def parse_price(raw) -> Decimal:
    """Catalog prices may arrive as numbers or display strings such as "₹1,299.00"."""
    if isinstance(raw, (int, float, Decimal)):
        value = Decimal(str(raw))
    else:
        try:
            value = Decimal(_PRICE_NOISE.sub("", str(raw or "")))
        except InvalidOperation:
            raise DependencyError(f"Catalog returned an unreadable price: {raw!r}")
    if value < 0:
        raise DependencyError(f"Catalog returned a negative price: {raw!r}")
    return value

class CatalogClient:
    """Read-only product lookups against the catalog service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url or settings.CATALOG_BASE).rstrip("/")
        self.timeout = timeout or settings.CATALOG_TIMEOUT_SECONDS
        self._transport = transport

    def find_product(self, product_id: str) -> Optional[Product]:
        ref = str(product_id)
        if ref in ("", ".", ".."):
            return None
        # one opaque path segment; slashes and dot segments never reach the catalog
        url = f"{self.base_url}/catalog/v1/products/{quote(ref, safe='')}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.get(url)
        except httpx.RequestError:
            raise DependencyError("Catalog unavailable")
        if resp.status_code in (400, 404, 422):
            # malformed ids are unknown products as far as orders are concerned
            return None
        if resp.status_code != 200:
            raise DependencyError(f"Catalog lookup failed with status {resp.status_code}")
        p = resp.json()
        return Product(
            id=str(p.get("id") or ref),
            name=p.get("name") or p.get("title") or "",
            price=parse_price(p.get("price")),
            image=p.get("image"),
        )

def get_catalog() -> CatalogClient:
    return CatalogClient()
