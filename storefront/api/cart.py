from fastapi import APIRouter, Depends
from redis import Redis

from storefront.api.deps import get_catalog, get_current_identity, get_redis
from storefront.schemas import CartItemAdd, CartItemUpdate, CartRead
from storefront.services import cart
from storefront.services.catalog import CatalogClient

router = APIRouter()

@router.get("", response_model=CartRead)
def get_my_cart(identity: dict = Depends(get_current_identity), r: Redis = Depends(get_redis)):
    return cart.view(r, identity["sub"])

@router.post("/items", response_model=CartRead, status_code=201)
def add_item(
    payload: CartItemAdd,
    identity: dict = Depends(get_current_identity),
    r: Redis = Depends(get_redis),
    catalog: CatalogClient = Depends(get_catalog),
):
    return cart.add_item(r, catalog, identity["sub"], payload.product_id, payload.quantity)

@router.patch("/items/{product_id}", response_model=CartRead)
def update_item(
    product_id: str,
    payload: CartItemUpdate,
    identity: dict = Depends(get_current_identity),
    r: Redis = Depends(get_redis),
):
    return cart.update_item(r, identity["sub"], product_id, payload.quantity)

@router.delete("/items/{product_id}", response_model=CartRead)
def remove_item(product_id: str, identity: dict = Depends(get_current_identity), r: Redis = Depends(get_redis)):
    return cart.remove_item(r, identity["sub"], product_id)

@router.post("/clear", response_model=CartRead)
def clear(identity: dict = Depends(get_current_identity), r: Redis = Depends(get_redis)):
    return cart.clear(r, identity["sub"])
