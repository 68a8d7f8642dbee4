# app/services/analytics_service.py
from datetime import datetime, timezone
from typing import Any, Dict

from app.celery_worker import celery_app
from app.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutAnalytics:
    """
    Boczny kanal analityki checkoutu - fire-and-forget przez Celery.
    Blad wysylki nigdy nie przerywa checkoutu.
    """

    def __init__(self, store_id: int | None = None, session_id: str | None = None):
        self.store_id = store_id
        self.session_id = session_id

    def track_funnel_step(self, step: str, **properties) -> None:
        self._track("funnel_step", {"step": step, **properties})

    def track_validation_error(self, step: str, errors) -> None:
        self._track("validation_error", {"step": step, "errors": list(errors)})

    def track_payment_attempt(self, gateway: str, amount: Any, reference: str) -> None:
        self._track("payment_attempt", {"gateway": gateway, "amount": str(amount), "reference": reference})

    def track_payment_result(self, gateway: str, reference: str | None, status: str) -> None:
        self._track("payment_result", {"gateway": gateway, "reference": reference, "status": status})

    def track_conversion(self, order_id: int, order_number: str) -> None:
        self._track("conversion", {"orderId": order_id, "orderNumber": order_number})

    def track_error(self, where: str, message: str) -> None:
        self._track("error", {"where": where, "message": message})

    def _track(self, event: str, properties: Dict[str, Any]) -> None:
        payload = {
            "event": event,
            "storeId": self.store_id,
            "sessionId": self.session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "properties": properties,
        }
        try:
            track_checkout_event_task.delay(payload)
        except Exception as e:
            # kanal boczny - tylko logujemy
            logger.warning(f"Failed to enqueue analytics event {event}: {e}")


@celery_app.task(name="app.services.analytics_service.track_checkout_event_task")
def track_checkout_event_task(payload: Dict[str, Any]):
    """
    Celery task - w prawdziwym systemie wysylalby event do hurtowni / narzedzia analitycznego.
    Teraz tylko loguje.
    """
    logger.info(
        f"[ANALYTICS] {payload.get('event')} store={payload.get('storeId')} "
        f"session={payload.get('sessionId')} {payload.get('properties')}"
    )
    return {"event": payload.get("event"), "status": "sent"}
