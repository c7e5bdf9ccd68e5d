from kafka import KafkaProducer
import json
import structlog
from storefront.core.config import settings

logger = structlog.get_logger(__name__)

_producer = None

def get_producer() -> KafkaProducer:
    global _producer
    if _producer is None:
        _producer = KafkaProducer(
            bootstrap_servers=[settings.KAFKA_BOOTSTRAP],
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda v: (v.encode("utf-8") if isinstance(v, str) else v),
            linger_ms=5,
            retries=3,
        )
    return _producer

def send(topic: str, key: str, value: dict):
    p = get_producer()
    p.send(topic, key=key, value=value)
    p.flush(5)

def publish_order_created(event: dict):
    """Fire-and-forget: a broker outage is logged and never reaches the caller."""
    if not settings.NOTIFICATIONS_ENABLED:
        return
    try:
        send(settings.TOPIC_ORDER_EVENTS, key=event["order_number"], value=event)
    except Exception as exc:
        logger.warning("Order notification failed", order_number=event.get("order_number"), error=str(exc))
