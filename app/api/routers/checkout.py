#app/api/routers/checkout.py
from fastapi import APIRouter, Depends, HTTPException, Response

from app.domain.errors import CheckoutApiError, CheckoutError, InitializationError, SessionExpiredError
from app.domain.schemas import (
    CheckoutCompletionResult,
    CheckoutStateOut,
    CheckoutStep,
    CustomerInfo,
    GoToStepIn,
    InitializeCheckoutIn,
    NavigationOut,
    PaymentMethod,
    PlaceOrderIn,
    ShippingAddress,
)
from app.services.checkout_registry import CheckoutRegistry, registry
from app.services.checkout_service import PREVIOUS_STEPS_MESSAGE, SESSION_EXPIRED_MESSAGE, CheckoutService
from app.services.payment_security import PaymentError

router = APIRouter(prefix="/checkout", tags=["checkout"])


def get_registry() -> CheckoutRegistry:
    return registry


def get_service(session_id: str, reg: CheckoutRegistry) -> CheckoutService:
    try:
        service = reg.get_or_resume(session_id)
    except SessionExpiredError:
        raise HTTPException(status_code=410, detail=SESSION_EXPIRED_MESSAGE)
    except CheckoutApiError as e:
        raise HTTPException(status_code=502, detail=str(e))

    if service.check_expiry():
        raise HTTPException(status_code=410, detail=SESSION_EXPIRED_MESSAGE)
    return service


def state_out(service: CheckoutService) -> CheckoutStateOut:
    state = service.state
    return CheckoutStateOut(
        session_id=state.session_id,
        store_id=state.store_id,
        current_step=state.current_step,
        completed_steps=[step for step in CheckoutStep if step in state.completed_steps],
        customer_info=state.customer_info,
        shipping_address=state.shipping_address,
        payment_method=state.payment_method,
        validation=state.validation,
        totals=state.totals,
        warnings=list(state.warnings),
        errors=state.errors,
        validation_error=state.validation_error,
        session_error=state.session_error,
        is_initializing=state.is_initializing,
        is_saving=state.is_saving,
        is_validating=state.is_validating,
        is_completing=state.is_completing,
        notices=[{"level": level, "message": message} for level, message in service.drain_notices()],
    )


@router.post("", response_model=CheckoutStateOut, status_code=201)
def initialize_checkout(payload: InitializeCheckoutIn, reg: CheckoutRegistry = Depends(get_registry)):
    svc = reg.create()
    try:
        svc.initialize_checkout(payload.store_id)
    except InitializationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CheckoutApiError as e:
        raise HTTPException(status_code=502, detail=str(e))

    reg.register(svc.state.session_id, svc)
    return state_out(svc)


@router.get("/{session_id}", response_model=CheckoutStateOut)
def get_checkout(session_id: str, reg: CheckoutRegistry = Depends(get_registry)):
    return state_out(get_service(session_id, reg))


@router.get("/{session_id}/navigation", response_model=NavigationOut)
def get_navigation(session_id: str, reg: CheckoutRegistry = Depends(get_registry)):
    return get_service(session_id, reg).navigation()


@router.post("/{session_id}/step", response_model=CheckoutStateOut)
def go_to_step(session_id: str, payload: GoToStepIn, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    if not svc.go_to_step(payload.step):
        raise HTTPException(status_code=409, detail=PREVIOUS_STEPS_MESSAGE)
    return state_out(svc)


@router.put("/{session_id}/customer-info", response_model=CheckoutStateOut)
def update_customer_info(session_id: str, payload: CustomerInfo, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    svc.update_customer_info(payload)
    return state_out(svc)


@router.put("/{session_id}/shipping-address", response_model=CheckoutStateOut)
def update_shipping_address(session_id: str, payload: ShippingAddress, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    svc.update_shipping_address(payload)
    return state_out(svc)


@router.put("/{session_id}/payment-method", response_model=CheckoutStateOut)
def update_payment_method(session_id: str, payload: PaymentMethod, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    svc.update_payment_method(payload)
    return state_out(svc)


@router.post("/{session_id}/validate", response_model=CheckoutStateOut)
def validate_checkout(session_id: str, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    svc.validate_current_step()
    return state_out(svc)


@router.post("/{session_id}/steps/{step}/complete", response_model=CheckoutStateOut)
def complete_step(session_id: str, step: CheckoutStep, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    if not svc.complete_step(step):
        errors = svc.state.validation.errors if svc.state.validation else []
        raise HTTPException(status_code=409, detail=errors[0] if errors else "Checkout is not valid")
    return state_out(svc)


@router.post("/{session_id}/orders", response_model=CheckoutCompletionResult, status_code=201)
def place_order(session_id: str, payload: PlaceOrderIn, reg: CheckoutRegistry = Depends(get_registry)):
    svc = get_service(session_id, reg)
    try:
        result = svc.place_order(payload.payment_reference)
    except SessionExpiredError:
        raise HTTPException(status_code=410, detail=SESSION_EXPIRED_MESSAGE)
    except PaymentError as e:
        raise HTTPException(status_code=502, detail=e.message)
    except CheckoutApiError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except (CheckoutError, ValueError) as e:
        raise HTTPException(status_code=409, detail=str(e))

    reg.remove(session_id)
    return result


@router.delete("/{session_id}", status_code=204)
def cancel_checkout(session_id: str, reg: CheckoutRegistry = Depends(get_registry)):
    svc = reg.remove(session_id)
    if svc is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    svc.reset_checkout()
    return Response(status_code=204)
