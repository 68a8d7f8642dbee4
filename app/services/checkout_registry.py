# app/services/checkout_registry.py
import threading
from typing import Callable, Dict

from app.services.checkout_client import CheckoutApiClient
from app.services.checkout_service import CheckoutService
from app.utils.logging import get_logger

logger = get_logger(__name__)


class CheckoutRegistry:
    """
    Aktywne checkouty w procesie, po session_id.
    Serwis checkoutu trzyma stan klienta (kroki, formularze), wiec musi zyc
    miedzy requestami - po wygasnieciu sesji albo zlozeniu zamowienia znika stad.
    """

    def __init__(self, service_factory: Callable[[], CheckoutService] | None = None):
        self.service_factory = service_factory or (lambda: CheckoutService(CheckoutApiClient()))
        self._services: Dict[str, CheckoutService] = {}
        self._lock = threading.Lock()

    def create(self) -> CheckoutService:
        return self.service_factory()

    def register(self, session_id: str, service: CheckoutService) -> None:
        previous_hook = service.on_expired

        def on_expired(store_id):
            #wygasla sesja znika z rejestru, kolejny request dostanie 410
            self.remove(session_id)
            if previous_hook is not None:
                previous_hook(store_id)

        service.on_expired = on_expired
        with self._lock:
            self._services[session_id] = service
        logger.info(f"Registered checkout session {session_id}")

    def get(self, session_id: str) -> CheckoutService | None:
        with self._lock:
            return self._services.get(session_id)

    def get_or_resume(self, session_id: str) -> CheckoutService:
        """Zwraca aktywny serwis albo wznawia sesje z serwera (np. po restarcie procesu)."""
        service = self.get(session_id)
        if service is not None:
            return service

        service = self.create()
        service.resume_checkout(session_id)
        self.register(session_id, service)
        return service

    def remove(self, session_id: str) -> CheckoutService | None:
        with self._lock:
            service = self._services.pop(session_id, None)
        if service is not None:
            service.shutdown()
            logger.info(f"Removed checkout session {session_id}")
        return service

    def __len__(self) -> int:
        return len(self._services)


registry = CheckoutRegistry()
