import logging
from celery import shared_task
from django.conf import settings

from apps.utils.kvstore import get_key_value_store

logger = logging.getLogger(__name__)


@shared_task(ignore_result=True)
def notify_low_stock(product_id, product_name, stock, threshold):
    """
    Advisory only. One alert per product per LOW_STOCK_ALERT_TTL window.
    """
    store = get_key_value_store()
    ttl = getattr(settings, "LOW_STOCK_ALERT_TTL", 3600)
    if not store.add(f"low_stock_alerted:{product_id}", stock, ttl=ttl):
        return False

    logger.warning(
        f"Low stock alert for {product_name}: {stock} left (threshold {threshold})",
        extra={"product_id": product_id},
    )
    return True
