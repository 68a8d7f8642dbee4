# app/services/session_manager.py
import threading
from datetime import datetime, timezone
from typing import Callable, List

from app.domain.errors import SessionExpiredError
from app.domain.schemas import CheckoutSession, CheckoutSessionPatch, CheckoutStep
from app.services.checkout_client import CheckoutApiClient
from app.utils.logging import get_logger

logger = get_logger(__name__)

SessionListener = Callable[[CheckoutSession], None]
ExpiredListener = Callable[[str | None], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutSessionManager:
    """
    Jedyny komponent ktory rozmawia z API sesji checkoutu.
    Trzyma ostatnio pobrana sesje (konsumenci subskrybuja zmiany zamiast pollingu)
    i wykrywa wygasniecie - raz wygasla sesja jest wygasla az do attach() nowej.
    """

    def __init__(
        self,
        client: CheckoutApiClient,
        session: CheckoutSession | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.clock = clock
        self._session = session
        self._expired = False
        self._lock = threading.RLock()
        self._listeners: List[SessionListener] = []
        self._expired_listeners: List[ExpiredListener] = []

    # query
    @property
    def session(self) -> CheckoutSession | None:
        return self._session

    @property
    def session_id(self) -> str | None:
        return self._session.id if self._session else None

    @property
    def is_expired(self) -> bool:
        with self._lock:
            if self._expired:
                return True
            if self._session is None or self._session.expires_at is None:
                return False

            expires_at = self._session.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at > self.clock():
                return False

        self._mark_expired()
        return True

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_expired(self, listener: ExpiredListener) -> None:
        self._expired_listeners.append(listener)

    def attach(self, session: CheckoutSession) -> None:
        """Podpina nowa sesje (po inicjalizacji) - zdejmuje flage wygasniecia."""
        with self._lock:
            self._expired = False
        self._publish(session)

    def detach(self) -> None:
        #flaga wygasniecia zostaje - zdejmuje ja dopiero attach() nowej sesji
        with self._lock:
            self._session = None

    # commands
    def load(self, session_id: str | None = None) -> CheckoutSession:
        """Pobiera sesje z serwera; z podanym session_id wznawia inna sesje (np. po przeladowaniu)."""
        if session_id is not None:
            with self._lock:
                self._expired = False
        else:
            session_id = self._require_session_id()

        session = self._call(lambda: self.client.get_session(session_id))
        self._publish(session)
        return session

    def update_step(self, step: CheckoutStep) -> CheckoutSession:
        session_id = self._require_session_id()
        logger.info(f"Updating step of checkout session {session_id} to {CheckoutStep(step).value}")
        session = self._call(lambda: self.client.update_step(session_id, step))
        self._publish(session)
        return session

    def update_session_data(self, patch: CheckoutSessionPatch) -> CheckoutSession:
        session_id = self._require_session_id()
        fields = sorted(patch.model_dump(exclude_none=True).keys())
        logger.info(f"Updating checkout session {session_id} data: {fields}")
        session = self._call(lambda: self.client.update_session_data(session_id, patch))
        self._publish(session)
        return session

    # helpers
    def _require_session_id(self) -> str:
        if self.is_expired:
            raise SessionExpiredError(session_id=self.session_id)
        session_id = self.session_id
        if not session_id:
            raise ValueError("No active checkout session")
        return session_id

    def _call(self, fn):
        try:
            return fn()
        except SessionExpiredError:
            logger.warning(f"Checkout session {self.session_id} reported as expired by server")
            self._mark_expired()
            raise

    def _mark_expired(self) -> None:
        with self._lock:
            if self._expired:
                return
            self._expired = True
            session_id = self.session_id
        #listenery poza lockiem - moga wolac reset serwisu
        for listener in list(self._expired_listeners):
            listener(session_id)

    def _publish(self, session: CheckoutSession) -> None:
        with self._lock:
            self._session = session
        for listener in list(self._listeners):
            listener(session)
