# app/domain/checkout_state.py
"""
Stan checkoutu po stronie klienta + czysty reducer.

Reducer nie robi zadnego I/O - wszystkie efekty uboczne (API, zapis sesji,
debounce) sa w CheckoutService, ktory tylko dispatchuje akcje.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Tuple, Union

from app.domain.schemas import (
    CheckoutSession,
    CheckoutSessionData,
    CheckoutStep,
    CheckoutTotals,
    CheckoutValidationResult,
    CustomerInfo,
    PaymentMethod,
    ShippingAddress,
)

STEP_ORDER: Tuple[CheckoutStep, ...] = (
    CheckoutStep.CUSTOMER_INFO,
    CheckoutStep.SHIPPING,
    CheckoutStep.PAYMENT,
    CheckoutStep.REVIEW,
)


def step_requirements(step: CheckoutStep) -> List[CheckoutStep]:
    #kazdy krok wymaga wszystkich poprzednich
    return list(STEP_ORDER[: STEP_ORDER.index(CheckoutStep(step))])


def can_proceed_to_step(step: CheckoutStep, completed_steps) -> bool:
    return all(req in completed_steps for req in step_requirements(step))


def next_step(step: CheckoutStep) -> CheckoutStep | None:
    idx = STEP_ORDER.index(CheckoutStep(step))
    return STEP_ORDER[idx + 1] if idx + 1 < len(STEP_ORDER) else None


def previous_step(step: CheckoutStep) -> CheckoutStep | None:
    idx = STEP_ORDER.index(CheckoutStep(step))
    return STEP_ORDER[idx - 1] if idx > 0 else None


def infer_completed_steps(data: CheckoutSessionData | None) -> FrozenSet[CheckoutStep]:
    """
    Odtwarza completed_steps po przeladowaniu z danych sesji.
    Krok jest uznany za ukonczony tylko jesli ma swoje dane i wszystkie
    poprzednie kroki tez sa ukonczone. Review nigdy nie jest odtwarzany.
    """
    if data is None:
        return frozenset()

    completed = []
    checks = (
        (CheckoutStep.CUSTOMER_INFO, data.customer_info),
        (CheckoutStep.SHIPPING, data.shipping_address),
        (CheckoutStep.PAYMENT, data.payment_method),
    )
    for step, value in checks:
        if value is None:
            break
        completed.append(step)
    return frozenset(completed)


@dataclass(frozen=True)
class CheckoutState:
    # sesja
    session_id: str | None = None
    session: CheckoutSession | None = None
    is_session_loading: bool = False
    session_error: str | None = None

    # kroki
    current_step: CheckoutStep = CheckoutStep.CUSTOMER_INFO
    completed_steps: FrozenSet[CheckoutStep] = frozenset()

    # dane formularzy (optymistyczne kopie)
    customer_info: CustomerInfo | None = None
    shipping_address: ShippingAddress | None = None
    payment_method: PaymentMethod | None = None

    # walidacja i sumy
    validation: CheckoutValidationResult | None = None
    totals: CheckoutTotals | None = None
    is_validating: bool = False
    validation_error: str | None = None

    # flagi ladowania
    is_initializing: bool = False
    is_saving: bool = False
    is_completing: bool = False

    errors: Dict[str, str] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    store_id: int | None = None

    def can_proceed_to_step(self, step: CheckoutStep) -> bool:
        return can_proceed_to_step(step, self.completed_steps)

    @property
    def items(self):
        if self.session is None:
            return []
        return self.session.data.items


# =====================================================
# Akcje (tagged variants)
# =====================================================
@dataclass(frozen=True)
class SetSession:
    session_id: str
    session: CheckoutSession


@dataclass(frozen=True)
class SyncSession:
    """Odswieza tylko lustro sesji - nie nadpisuje optymistycznego stanu klienta."""

    session: CheckoutSession


@dataclass(frozen=True)
class SetSessionLoading:
    loading: bool


@dataclass(frozen=True)
class SetSessionError:
    error: str | None


@dataclass(frozen=True)
class SetCurrentStep:
    step: CheckoutStep


@dataclass(frozen=True)
class CompleteStep:
    step: CheckoutStep


@dataclass(frozen=True)
class RestoreCompletedSteps:
    steps: FrozenSet[CheckoutStep]


@dataclass(frozen=True)
class SetCustomerInfo:
    info: CustomerInfo | None


@dataclass(frozen=True)
class SetShippingAddress:
    address: ShippingAddress | None


@dataclass(frozen=True)
class SetPaymentMethod:
    method: PaymentMethod | None


@dataclass(frozen=True)
class SetValidation:
    validation: CheckoutValidationResult
    totals: CheckoutTotals


@dataclass(frozen=True)
class SetValidating:
    validating: bool


@dataclass(frozen=True)
class SetValidationError:
    error: str | None


@dataclass(frozen=True)
class SetInitializing:
    initializing: bool


@dataclass(frozen=True)
class SetSaving:
    saving: bool


@dataclass(frozen=True)
class SetCompleting:
    completing: bool


@dataclass(frozen=True)
class SetError:
    field: str
    message: str


@dataclass(frozen=True)
class ClearError:
    field: str


@dataclass(frozen=True)
class SetWarnings:
    warnings: Tuple[str, ...]


@dataclass(frozen=True)
class SetStoreId:
    store_id: int


@dataclass(frozen=True)
class ResetCheckout:
    pass


CheckoutAction = Union[
    SetSession,
    SyncSession,
    SetSessionLoading,
    SetSessionError,
    SetCurrentStep,
    CompleteStep,
    RestoreCompletedSteps,
    SetCustomerInfo,
    SetShippingAddress,
    SetPaymentMethod,
    SetValidation,
    SetValidating,
    SetValidationError,
    SetInitializing,
    SetSaving,
    SetCompleting,
    SetError,
    ClearError,
    SetWarnings,
    SetStoreId,
    ResetCheckout,
]


def _complete_step(state: CheckoutState, step: CheckoutStep) -> CheckoutState:
    completed = state.completed_steps | {step}
    current = state.current_step

    #auto-advance tylko do przodu, nigdy nie cofamy aktualnego kroku
    following = next_step(step)
    if (
        following is not None
        and can_proceed_to_step(following, completed)
        and STEP_ORDER.index(following) > STEP_ORDER.index(current)
    ):
        current = following

    return replace(state, completed_steps=frozenset(completed), current_step=current)


def reduce(state: CheckoutState, action: CheckoutAction) -> CheckoutState:
    match action:
        case SetSession(session_id=session_id, session=session):
            data = session.data
            return replace(
                state,
                session_id=session_id,
                session=session,
                store_id=session.store_id,
                current_step=session.step,
                customer_info=data.customer_info,
                shipping_address=data.shipping_address,
                payment_method=data.payment_method,
                totals=data.totals or state.totals,
            )
        case SyncSession(session=session):
            return replace(state, session=session)
        case SetSessionLoading(loading=loading):
            return replace(state, is_session_loading=loading)
        case SetSessionError(error=error):
            return replace(state, session_error=error, is_session_loading=False)
        case SetCurrentStep(step=step):
            return replace(state, current_step=step)
        case CompleteStep(step=step):
            return _complete_step(state, step)
        case RestoreCompletedSteps(steps=steps):
            return replace(state, completed_steps=frozenset(steps))
        case SetCustomerInfo(info=info):
            return replace(state, customer_info=info)
        case SetShippingAddress(address=address):
            return replace(state, shipping_address=address)
        case SetPaymentMethod(method=method):
            return replace(state, payment_method=method)
        case SetValidation(validation=validation, totals=totals):
            return replace(
                state,
                validation=validation,
                totals=totals,
                is_validating=False,
                validation_error=None,
            )
        case SetValidating(validating=validating):
            return replace(state, is_validating=validating)
        case SetValidationError(error=error):
            #poprzednia (dobra) walidacja i sumy zostaja
            return replace(state, validation_error=error, is_validating=False)
        case SetInitializing(initializing=initializing):
            return replace(state, is_initializing=initializing)
        case SetSaving(saving=saving):
            return replace(state, is_saving=saving)
        case SetCompleting(completing=completing):
            return replace(state, is_completing=completing)
        case SetError(field=name, message=message):
            return replace(state, errors={**state.errors, name: message})
        case ClearError(field=name):
            return replace(state, errors={k: v for k, v in state.errors.items() if k != name})
        case SetWarnings(warnings=warnings):
            return replace(state, warnings=tuple(warnings))
        case SetStoreId(store_id=store_id):
            return replace(state, store_id=store_id)
        case ResetCheckout():
            return CheckoutState()
        case _:
            return state
