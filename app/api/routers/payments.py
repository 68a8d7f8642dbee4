#app/api/routers/payments.py
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.data.database import get_db
from app.domain.schemas import CallbackOut, PreparePaymentIn, PreparePaymentOut
from app.repos.payment_attempt_repo import PaymentAttemptRepo
from app.services.analytics_service import CheckoutAnalytics
from app.services.checkout_client import CheckoutApiClient
from app.services.lock_service import LockService
from app.services.payment_callback import CallbackWindow, PaymentCallbackHandler
from app.services.payment_security import (
    PaymentRateLimiter,
    PaymentSession,
    generate_payment_reference,
    payment_validator,
    sanitize_payment_metadata,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

# UWAGA: ten router musi byc podpiety przed routerem checkout,
# inaczej /checkout/callback zlapie sie jako /checkout/{session_id}
router = APIRouter(tags=["payments"])

MAX_REFERENCE_ATTEMPTS = 3

rate_limiter = PaymentRateLimiter()


def get_rate_limiter() -> PaymentRateLimiter:
    return rate_limiter


def get_callback_handler(db: Session = Depends(get_db)) -> PaymentCallbackHandler:
    return PaymentCallbackHandler(
        verify=CheckoutApiClient().verify_payment,
        attempt_repo=PaymentAttemptRepo(db),
        lock_service=LockService(),
        analytics=CheckoutAnalytics(),
    )


@router.get("/checkout/callback", response_model=CallbackOut)
def payment_callback(
    request: Request,
    popup: bool = Query(False, description="Strona callbacku otwarta w popupie bramki"),
    handler: PaymentCallbackHandler = Depends(get_callback_handler),
):
    window = CallbackWindow(is_popup=popup, origin=f"{request.url.scheme}://{request.url.netloc}")
    outcome = handler.handle(dict(request.query_params), window)
    return CallbackOut(
        status=outcome.status,
        message=outcome.message,
        reference=outcome.reference,
        gateway=outcome.gateway,
        opener_messages=window.opener_messages,
        closed=window.closed,
        redirect_url=window.redirect_url,
        redirect_delay_seconds=window.redirect_delay_seconds,
    )


@router.post("/payments/prepare", response_model=PreparePaymentOut, status_code=201)
def prepare_payment(
    payload: PreparePaymentIn,
    db: Session = Depends(get_db),
    limiter: PaymentRateLimiter = Depends(get_rate_limiter),
):
    valid, errors = payment_validator.validate_payment_data(
        payload.amount,
        payload.currency,
        payload.method,
        payload.gateway,
        payload.order_id,
    )
    if not valid:
        raise HTTPException(status_code=400, detail=errors)

    identifier = f"order:{payload.order_id}"
    if not limiter.can_attempt(identifier):
        retry_after = int(limiter.remaining_time(identifier)) + 1
        raise HTTPException(
            status_code=429,
            detail="Too many payment attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    repo = PaymentAttemptRepo(db)
    reference = generate_payment_reference(payload.order_id)
    for _ in range(MAX_REFERENCE_ATTEMPTS - 1):
        if not repo.reference_exists(reference):
            break
        logger.warning(f"Payment reference collision for order {payload.order_id}, regenerating")
        reference = generate_payment_reference(payload.order_id)
    else:
        if repo.reference_exists(reference):
            raise HTTPException(status_code=409, detail="Could not generate a unique payment reference")

    session = PaymentSession()
    expires_at = datetime.fromtimestamp(session.expires_at, tz=timezone.utc)
    gateway = payload.gateway.lower()

    repo.create_attempt(
        reference=reference,
        order_id=payload.order_id,
        gateway=gateway,
        amount=payload.amount,
        currency=payload.currency.upper(),
        expires_at=expires_at,
    )
    CheckoutAnalytics().track_payment_attempt(gateway, payload.amount, reference)
    logger.info(f"Prepared payment {reference} for order {payload.order_id} via {gateway}")

    return PreparePaymentOut(
        reference=reference,
        gateway=gateway,
        expires_at=expires_at,
        metadata=sanitize_payment_metadata(payload.metadata),
    )
