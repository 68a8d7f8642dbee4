# app/services/payment_callback.py
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping
from urllib.parse import quote

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.domain.schemas import CallbackStatus, PaymentVerificationResult
from app.repos.payment_attempt_repo import PaymentAttemptRepo
from app.services.analytics_service import CheckoutAnalytics
from app.services.lock_service import LockService
from app.utils.logging import get_logger
from app.utils.settings import DEFAULT_PAYMENT_GATEWAY, SUCCESS_REDIRECT_DELAY_SECONDS

logger = get_logger(__name__)

REFERENCE_PARAMS = ("reference", "tx_ref", "trxref")
CANCELLED_STATUSES = ("cancelled", "canceled")

MISSING_REFERENCE_MESSAGE = "Payment reference not found in callback URL"
CANCELLED_MESSAGE = "Payment was cancelled by user"
SUCCESS_MESSAGE = "Payment verified successfully"
FAILED_MESSAGE = "Payment verification failed"
IN_PROGRESS_MESSAGE = "Payment is already being processed"

#status w rejestrze prob -> wynik callbacku
_STORED_STATUS = {
    "SUCCESS": CallbackStatus.SUCCESS,
    "FAILED": CallbackStatus.FAILED,
    "CANCELLED": CallbackStatus.CANCELLED,
    "EXPIRED": CallbackStatus.FAILED,
}


@dataclass
class CallbackWindow:
    """
    Efekty uboczne strony callbacku: wiadomosci do okna otwierajacego (popup),
    zamkniecie okna, opozniony redirect. Route zwraca je jako JSON.
    """

    is_popup: bool = False
    origin: str = ""
    opener_messages: List[Dict[str, Any]] = field(default_factory=list)
    closed: bool = False
    redirect_url: str | None = None
    redirect_delay_seconds: float | None = None

    def post_to_opener(self, message: Dict[str, Any], target_origin: str) -> None:
        self.opener_messages.append({"targetOrigin": target_origin, "data": message})

    def close(self) -> None:
        self.closed = True

    def schedule_redirect(self, url: str, delay_seconds: float) -> None:
        self.redirect_url = url
        self.redirect_delay_seconds = delay_seconds


@dataclass
class CallbackOutcome:
    status: CallbackStatus = CallbackStatus.LOADING
    message: str = ""
    reference: str | None = None
    gateway: str = DEFAULT_PAYMENT_GATEWAY


class PaymentCallbackHandler:
    """
    Obsluga powrotu z bramki platnosci.

    Kazde wywolanie konczy sie jednym z: success / failed / cancelled.
    Bledy nigdy nie wychodza na zewnatrz - zamieniaja sie w failed z komunikatem.
    """

    def __init__(
        self,
        verify: Callable[[str], PaymentVerificationResult],
        default_gateway: str = DEFAULT_PAYMENT_GATEWAY,
        attempt_repo: PaymentAttemptRepo | None = None,
        lock_service: LockService | None = None,
        redirect_delay: float = SUCCESS_REDIRECT_DELAY_SECONDS,
        analytics: CheckoutAnalytics | None = None,
    ):
        self.verify = verify
        self.default_gateway = default_gateway
        self.attempt_repo = attempt_repo
        self.lock_service = lock_service
        self.redirect_delay = redirect_delay
        self.analytics = analytics

    def handle(self, params: Mapping[str, str], window: CallbackWindow | None = None) -> CallbackOutcome:
        window = window or CallbackWindow()
        reference = next((params.get(name) for name in REFERENCE_PARAMS if params.get(name)), None)
        gateway = params.get("gateway") or self.default_gateway
        status = (params.get("status") or "").lower()

        if not reference:
            logger.warning("Payment callback without reference")
            return CallbackOutcome(CallbackStatus.FAILED, MISSING_REFERENCE_MESSAGE, None, gateway)

        if status in CANCELLED_STATUSES:
            logger.info(f"Payment {reference} cancelled by user ({gateway})")
            outcome = CallbackOutcome(CallbackStatus.CANCELLED, CANCELLED_MESSAGE, reference, gateway)
            self._record(outcome)
        else:
            outcome = self._verify_once(reference, gateway)

        self._track(outcome)
        self._apply_window_effects(outcome, window)
        return outcome

    # =====================================================
    # Weryfikacja
    # =====================================================
    def _verify_once(self, reference: str, gateway: str) -> CallbackOutcome:
        stored = self._stored_outcome(reference, gateway)
        if stored is not None:
            return stored

        owner = uuid.uuid4().hex
        locked = self._acquire_lock(reference, owner)
        if locked is False:
            logger.warning(f"Payment {reference} is already being verified by another worker")
            return CallbackOutcome(CallbackStatus.FAILED, IN_PROGRESS_MESSAGE, reference, gateway)

        try:
            #inny worker mogl skonczyc zanim dostalismy lock
            stored = self._stored_outcome(reference, gateway)
            if stored is not None:
                return stored
            return self._verify(reference, gateway)
        finally:
            if locked:
                self._release_lock(reference, owner)

    def _verify(self, reference: str, gateway: str) -> CallbackOutcome:
        try:
            result = self.verify(reference)
        except Exception as e:
            # blad transportu - nie zapisujemy wyniku, kolejny callback sprobuje ponownie
            logger.error(f"Payment verification for {reference} failed: {e}")
            return CallbackOutcome(CallbackStatus.FAILED, str(e) or FAILED_MESSAGE, reference, gateway)

        if result.success and result.status == "success":
            logger.info(f"Payment {reference} verified successfully ({gateway})")
            outcome = CallbackOutcome(CallbackStatus.SUCCESS, SUCCESS_MESSAGE, reference, gateway)
        else:
            logger.warning(f"Payment {reference} not successful: status={result.status} message={result.message}")
            outcome = CallbackOutcome(CallbackStatus.FAILED, result.message or FAILED_MESSAGE, reference, gateway)

        self._record(outcome)
        return outcome

    def _stored_outcome(self, reference: str, gateway: str) -> CallbackOutcome | None:
        if self.attempt_repo is None:
            return None
        try:
            attempt = self.attempt_repo.get_terminal_attempt(reference)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read payment attempt {reference}: {e}")
            return None
        if attempt is None:
            return None

        logger.info(f"Payment {reference} already processed with status {attempt.status}")
        status = _STORED_STATUS[attempt.status]
        default = SUCCESS_MESSAGE if status == CallbackStatus.SUCCESS else FAILED_MESSAGE
        return CallbackOutcome(status, attempt.message or default, reference, attempt.gateway or gateway)

    def _record(self, outcome: CallbackOutcome) -> None:
        if self.attempt_repo is None or outcome.reference is None:
            return
        try:
            self.attempt_repo.record_outcome(
                outcome.reference,
                outcome.status.value.upper(),
                outcome.message,
                gateway=outcome.gateway,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record outcome of payment {outcome.reference}: {e}")
            self.attempt_repo.db.rollback()

    # =====================================================
    # Lock
    # =====================================================
    def _acquire_lock(self, reference: str, owner: str) -> bool | None:
        """True/False gdy lock jest dostepny, None gdy redis nie odpowiada."""
        if self.lock_service is None:
            return None
        try:
            return self.lock_service.acquire_callback_lock(reference, owner)
        except RedisError as e:
            logger.warning(f"Callback lock unavailable for {reference}, verifying without it: {e}")
            return None

    def _release_lock(self, reference: str, owner: str) -> None:
        try:
            self.lock_service.release_callback_lock(reference, owner)
        except RedisError as e:
            #lock i tak wygasnie po TTL
            logger.warning(f"Failed to release callback lock for {reference}: {e}")

    # =====================================================
    # Okno
    # =====================================================
    def _apply_window_effects(self, outcome: CallbackOutcome, window: CallbackWindow) -> None:
        if window.is_popup:
            window.post_to_opener(
                {
                    "type": f"{outcome.gateway}_callback",
                    "reference": outcome.reference,
                    "status": outcome.status.value,
                },
                window.origin,
            )
            window.close()
            return

        if outcome.status == CallbackStatus.SUCCESS:
            window.schedule_redirect(
                f"/checkout/success?reference={quote(outcome.reference, safe='')}",
                self.redirect_delay,
            )

    def _track(self, outcome: CallbackOutcome) -> None:
        if self.analytics is not None:
            self.analytics.track_payment_result(outcome.gateway, outcome.reference, outcome.status.value)
