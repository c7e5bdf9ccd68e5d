import json
from typing import Any, Dict, List, Optional
from redis import Redis
from storefront.core.config import settings

_client: Optional[Redis] = None

def get_client() -> Redis:
    global _client
    if _client is None:
        _client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client

def cart_key(user_id: str) -> str:
    return f"cart:{user_id}"

def get_items(user_id: str, r: Optional[Redis] = None) -> List[Dict[str, Any]]:
    r = r or get_client()
    raw = r.hgetall(cart_key(user_id))  # {product_id: item_json}
    items = []
    for pid in sorted(raw):
        try:
            items.append(json.loads(raw[pid]))
        except ValueError:
            # unreadable snapshot; drop it rather than break the whole cart
            r.hdel(cart_key(user_id), pid)
    return items

def get_item(user_id: str, product_id: str, r: Optional[Redis] = None) -> Optional[Dict[str, Any]]:
    r = r or get_client()
    val = r.hget(cart_key(user_id), str(product_id))
    return json.loads(val) if val else None

def put_item(user_id: str, item: Dict[str, Any], r: Optional[Redis] = None):
    r = r or get_client()
    r.hset(cart_key(user_id), str(item["product_id"]), json.dumps(item))

def delete_item(user_id: str, product_id: str, r: Optional[Redis] = None) -> bool:
    r = r or get_client()
    return bool(r.hdel(cart_key(user_id), str(product_id)))

def clear_cart(user_id: str, r: Optional[Redis] = None):
    r = r or get_client()
    r.delete(cart_key(user_id))

def merge_item(user_id: str, item: Dict[str, Any], r: Optional[Redis] = None) -> Dict[str, Any]:
    """Add ``item`` to the cart, summing quantities with any existing line.

    Runs under WATCH so a concurrent add to the same cart retries instead of
    overwriting the other increment.
    """
    r = r or get_client()
    key = cart_key(user_id)
    field = str(item["product_id"])

    def _merge(pipe) -> Dict[str, Any]:
        current = pipe.hget(key, field)
        merged = dict(item)
        if current:
            merged["quantity"] = int(json.loads(current)["quantity"]) + int(item["quantity"])
        pipe.multi()
        pipe.hset(key, field, json.dumps(merged))
        return merged

    return r.transaction(_merge, key, value_from_callable=True)
