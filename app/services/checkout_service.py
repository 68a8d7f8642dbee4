# app/services/checkout_service.py
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, List, Tuple

from app.domain.checkout_state import (
    STEP_ORDER,
    CheckoutAction,
    CheckoutState,
    ClearError,
    CompleteStep,
    ResetCheckout,
    RestoreCompletedSteps,
    SetCompleting,
    SetCurrentStep,
    SetCustomerInfo,
    SetError,
    SetInitializing,
    SetPaymentMethod,
    SetSaving,
    SetSession,
    SetSessionError,
    SetSessionLoading,
    SetShippingAddress,
    SetStoreId,
    SetValidating,
    SetValidation,
    SetValidationError,
    SetWarnings,
    SyncSession,
    infer_completed_steps,
    next_step,
    previous_step,
    reduce,
)
from app.domain.errors import CheckoutError, InitializationError, SessionExpiredError
from app.domain.schemas import (
    CheckoutCompletionResult,
    CheckoutSession,
    CheckoutSessionPatch,
    CheckoutStep,
    CustomerInfo,
    NavigationOut,
    PaymentMethod,
    ShippingAddress,
)
from app.services.analytics_service import CheckoutAnalytics
from app.services.checkout_client import CheckoutApiClient
from app.services.payment_security import PaymentError, validate_payment_url
from app.services.session_manager import CheckoutSessionManager
from app.utils.debounce import Debouncer
from app.utils.logging import get_logger
from app.utils.settings import AUTOSAVE_DEBOUNCE_SECONDS

logger = get_logger(__name__)

Notifier = Callable[[str, str], None]
StateListener = Callable[[CheckoutState], None]

SESSION_EXPIRED_MESSAGE = "Your checkout session has expired. Please start over."
PREVIOUS_STEPS_MESSAGE = "Please complete previous steps first"
MAX_NOTICES = 50


class CheckoutService:
    """
    Orkiestracja checkoutu dla jednego kupujacego.

    Stan jest w CheckoutState i zmienia sie TYLKO przez dispatch() -> reduce().
    Efekty uboczne (zapis sesji, walidacja, zamowienie) sa tutaj:
      - zmiany formularzy: optymistycznie do stanu + autosave z debounce,
      - zmiana kroku: od razu w stanie, zapis kroku w tle (executor),
      - wygasniecie sesji: komunikat, reset i on_expired(store_id).
    """

    def __init__(
        self,
        client: CheckoutApiClient,
        session_manager: CheckoutSessionManager | None = None,
        *,
        notifier: Notifier | None = None,
        on_expired: Callable[[int | None], None] | None = None,
        analytics: CheckoutAnalytics | None = None,
        autosave_delay: float = AUTOSAVE_DEBOUNCE_SECONDS,
        timer_factory=threading.Timer,
        executor: Executor | None = None,
    ):
        self.client = client
        self.session_manager = session_manager if session_manager is not None else CheckoutSessionManager(client)
        self.notifier = notifier if notifier is not None else self._record_notice
        self.on_expired = on_expired
        self.analytics = analytics if analytics is not None else CheckoutAnalytics()
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="checkout-step")
        self.executor = executor

        self._state = CheckoutState()
        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []
        self.notices: List[Tuple[str, str]] = []

        self._autosave = Debouncer(autosave_delay, self._save_progress, timer_factory=timer_factory)

        self.session_manager.subscribe(self._on_session_changed)
        self.session_manager.on_expired(self._on_session_expired)

    # =====================================================
    # Stan
    # =====================================================
    @property
    def state(self) -> CheckoutState:
        return self._state

    def dispatch(self, action: CheckoutAction) -> CheckoutState:
        with self._lock:
            self._state = reduce(self._state, action)
            state = self._state
        for listener in list(self._listeners):
            listener(state)
        return state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def drain_notices(self) -> List[Tuple[str, str]]:
        with self._lock:
            notices, self.notices = self.notices, []
        return notices

    def _record_notice(self, level: str, message: str) -> None:
        log = logger.error if level == "error" else logger.info
        log(f"[NOTICE:{level}] {message}")
        with self._lock:
            self.notices.append((level, message))
            del self.notices[:-MAX_NOTICES]

    def _notify(self, level: str, message: str) -> None:
        try:
            self.notifier(level, message)
        except Exception as e:
            logger.warning(f"Notifier failed for '{message}': {e}")

    # =====================================================
    # Sesja
    # =====================================================
    def initialize_checkout(self, store_id: int) -> CheckoutState:
        self.dispatch(SetInitializing(True))
        self.dispatch(SetStoreId(store_id))
        try:
            result = self.client.initialize_checkout(store_id)
            if not result.session.data.items:
                raise InitializationError("Your cart is empty")

            self.analytics.store_id = store_id
            self.analytics.session_id = result.session.id

            self.session_manager.attach(result.session)
            self.dispatch(SetSession(result.session.id, result.session))
            self.dispatch(SetValidation(result.validation, result.totals))
            self.dispatch(SetWarnings(tuple(result.validation.warnings)))

            logger.info(f"Checkout session {result.session.id} initialized for store {store_id}")
            self._notify("success", "Checkout initialized successfully")
            self.analytics.track_funnel_step("initialized")
            return self.state
        except CheckoutError as e:
            logger.error(f"Failed to initialize checkout for store {store_id}: {e}")
            self.dispatch(SetSessionError(str(e) or "Failed to initialize checkout"))
            self._notify("error", str(e) or "Failed to initialize checkout")
            self.analytics.track_error("initialize", str(e))
            raise
        finally:
            self.dispatch(SetInitializing(False))

    def resume_checkout(self, session_id: str) -> CheckoutState:
        """Wznawia istniejaca sesje po przeladowaniu - completed_steps odtwarzane z danych sesji."""
        self.dispatch(SetSessionLoading(True))
        try:
            session = self.session_manager.load(session_id)
        except SessionExpiredError:
            raise
        except CheckoutError as e:
            logger.error(f"Failed to resume checkout session {session_id}: {e}")
            self.dispatch(SetSessionError(str(e)))
            raise
        finally:
            self.dispatch(SetSessionLoading(False))

        self.analytics.store_id = session.store_id
        self.analytics.session_id = session.id

        completed = infer_completed_steps(session.data)
        self.dispatch(SetSession(session.id, session))
        self.dispatch(RestoreCompletedSteps(completed))

        #krok z serwera moze byc dalej niz pozwalaja odtworzone dane
        if not self.state.can_proceed_to_step(session.step):
            self.dispatch(SetCurrentStep(self._furthest_reachable_step()))

        self.validate_current_step()
        return self.state

    def check_expiry(self) -> bool:
        #odczyt is_expired sam odpala obsluge wygasniecia
        return self.session_manager.is_expired

    def _furthest_reachable_step(self) -> CheckoutStep:
        reachable = [s for s in STEP_ORDER if self.state.can_proceed_to_step(s)]
        return reachable[-1]

    def _on_session_changed(self, session: CheckoutSession) -> None:
        if self.state.session_id == session.id:
            self.dispatch(SyncSession(session))

    def _on_session_expired(self, session_id: str | None) -> None:
        store_id = self.state.store_id
        logger.warning(f"Checkout session {session_id} expired (store {store_id})")
        self._notify("error", SESSION_EXPIRED_MESSAGE)
        self.reset_checkout()
        if self.on_expired is not None:
            self.on_expired(store_id)

    # =====================================================
    # Kroki
    # =====================================================
    def go_to_step(self, step: CheckoutStep) -> bool:
        step = CheckoutStep(step)
        if not self.state.can_proceed_to_step(step):
            self._notify("error", PREVIOUS_STEPS_MESSAGE)
            return False

        self.dispatch(SetCurrentStep(step))
        self.analytics.track_funnel_step(step.value)

        if self.state.session_id:
            self.executor.submit(self._persist_step, step)
        return True

    def go_next(self) -> bool:
        following = next_step(self.state.current_step)
        if following is None:
            return False
        return self.go_to_step(following)

    def go_previous(self) -> bool:
        prev = previous_step(self.state.current_step)
        if prev is None:
            return False
        return self.go_to_step(prev)

    def complete_step(self, step: CheckoutStep) -> bool:
        step = CheckoutStep(step)
        validation = self.state.validation
        if validation is not None and not validation.is_valid:
            message = validation.errors[0] if validation.errors else "Please fix the errors before continuing"
            self._notify("error", message)
            return False

        self.dispatch(CompleteStep(step))
        self.analytics.track_funnel_step(step.value, completed=True)
        return True

    def is_step_completed(self, step: CheckoutStep) -> bool:
        return CheckoutStep(step) in self.state.completed_steps

    def navigation(self) -> NavigationOut:
        state = self.state
        current = state.current_step
        following = next_step(current)
        prev = previous_step(current)
        return NavigationOut(
            current_step=current,
            current_step_index=STEP_ORDER.index(current),
            total_steps=len(STEP_ORDER),
            can_go_next=following is not None and state.can_proceed_to_step(following),
            can_go_previous=prev is not None,
            next_step=following,
            previous_step=prev,
        )

    def _persist_step(self, step: CheckoutStep) -> None:
        try:
            self.session_manager.update_step(step)
        except SessionExpiredError:
            # obsluzone przez listener on_expired
            logger.warning(f"Step {step.value} not saved - checkout session expired")
        except (CheckoutError, ValueError) as e:
            logger.error(f"Failed to save checkout step {step.value}: {e}")
            self.dispatch(SetSessionError(str(e)))

    # =====================================================
    # Formularze + autosave
    # =====================================================
    def update_customer_info(self, info: CustomerInfo) -> bool:
        self.dispatch(SetCustomerInfo(info))
        self._schedule_autosave()
        return self.validate_current_step()

    def update_shipping_address(self, address: ShippingAddress) -> bool:
        self.dispatch(SetShippingAddress(address))
        self._schedule_autosave()
        return self.validate_current_step()

    def update_payment_method(self, method: PaymentMethod) -> None:
        self.dispatch(SetPaymentMethod(method))
        self._schedule_autosave()

    def _schedule_autosave(self) -> None:
        if self.state.session_id:
            self._autosave.call()

    def _build_patch(self) -> CheckoutSessionPatch | None:
        state = self.state
        if not state.session_id:
            return None
        patch = CheckoutSessionPatch(
            customer_info=state.customer_info,
            shipping_address=state.shipping_address,
            payment_method=state.payment_method,
        )
        if not patch.model_dump(exclude_none=True):
            return None
        return patch

    def _save_progress(self) -> None:
        #stan czytany w momencie zapisu - wygrywa ostatnia wartosc
        patch = self._build_patch()
        if patch is None:
            return

        self.dispatch(SetSaving(True))
        try:
            self.session_manager.update_session_data(patch)
        except SessionExpiredError:
            logger.warning("Checkout progress not saved - session expired")
        except (CheckoutError, ValueError) as e:
            logger.error(f"Failed to save checkout progress: {e}")
            self.dispatch(SetSessionError(str(e)))
            self._notify("error", "Failed to save checkout progress")
        finally:
            self.dispatch(SetSaving(False))

    def flush_autosave(self) -> None:
        self._autosave.flush()

    # =====================================================
    # Walidacja
    # =====================================================
    def validate_current_step(self) -> bool:
        state = self.state
        if not state.store_id or not state.items:
            return False

        self.dispatch(SetValidating(True))
        try:
            result = self.client.validate_step(state.store_id, state.items, state.shipping_address)
        except CheckoutError as e:
            logger.warning(f"Checkout validation failed for store {state.store_id}: {e}")
            self.dispatch(SetValidationError(str(e) or "Validation failed"))
            return False

        self.dispatch(SetValidation(result.validation, result.totals))
        self.dispatch(SetWarnings(tuple(result.validation.warnings)))
        if not result.validation.is_valid:
            self.analytics.track_validation_error(self.state.current_step.value, result.validation.errors)
        return result.validation.is_valid

    def set_error(self, field: str, message: str) -> None:
        self.dispatch(SetError(field, message))

    def clear_error(self, field: str) -> None:
        self.dispatch(ClearError(field))

    # =====================================================
    # Zamowienie
    # =====================================================
    def place_order(self, payment_reference: str | None = None) -> CheckoutCompletionResult:
        state = self.state
        if not state.session_id:
            raise ValueError("No active checkout session")
        if state.current_step != CheckoutStep.REVIEW or not state.can_proceed_to_step(CheckoutStep.REVIEW):
            self._notify("error", PREVIOUS_STEPS_MESSAGE)
            raise CheckoutError(PREVIOUS_STEPS_MESSAGE)
        if state.payment_method is None:
            raise CheckoutError("Payment method is required")
        if self.check_expiry():
            raise SessionExpiredError(session_id=state.session_id)

        self.dispatch(SetCompleting(True))
        try:
            #najpierw zapis zaleglych zmian formularzy
            self._autosave.flush()
            result = self.client.complete_checkout(state.session_id, state.payment_method, payment_reference)

            if result.payment_url and not validate_payment_url(result.payment_url):
                logger.error(f"Rejected payment redirect to untrusted URL {result.payment_url}")
                raise PaymentError("Untrusted payment redirect URL", "INVALID_REDIRECT")

            logger.info(f"Order {result.order_number} placed from checkout session {state.session_id}")
            self.analytics.track_conversion(result.order_id, result.order_number)
            self._notify("success", f"Order #{result.order_number} created successfully!")
        except SessionExpiredError:
            raise
        except (CheckoutError, PaymentError) as e:
            logger.error(f"Failed to place order for session {state.session_id}: {e}")
            self.dispatch(SetSessionError(str(e)))
            self._notify("error", str(e) or "Failed to place order")
            self.analytics.track_error("place_order", str(e))
            raise
        finally:
            self.dispatch(SetCompleting(False))

        self.reset_checkout()
        return result

    def reset_checkout(self) -> None:
        self._autosave.cancel()
        self.session_manager.detach()
        self.dispatch(ResetCheckout())

    def shutdown(self) -> None:
        self._autosave.cancel()
        if isinstance(self.executor, ThreadPoolExecutor):
            self.executor.shutdown(wait=False)
