# tests/test_api.py
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api.routers import checkout as checkout_router
from app.api.routers import guest_carts as guest_carts_router
from app.api.routers import payments as payments_router
from app.data.database import get_db
from app.domain.errors import CheckoutApiError, SessionExpiredError
from app.domain.schemas import (
    CheckoutCompletionResult,
    InitializeCheckoutResult,
    PaymentVerificationResult,
    StepValidationResult,
)
from app.main import app
from app.repos.payment_attempt_repo import PaymentAttemptRepo
from app.repos.guest_cart_repo import GuestCartRepo
from app.services.checkout_registry import CheckoutRegistry
from app.services.checkout_service import CheckoutService
from app.services.payment_callback import PaymentCallbackHandler
from app.services.payment_security import PaymentRateLimiter

from conftest import InlineExecutor, TimerFactory, make_session, make_totals, make_validation


@pytest.fixture
def api_client():
    client = MagicMock()
    client.initialize_checkout.return_value = InitializeCheckoutResult(
        session=make_session(),
        validation=make_validation(),
        totals=make_totals(),
    )
    client.validate_step.return_value = StepValidationResult(validation=make_validation(), totals=make_totals())
    client.update_session_data.side_effect = lambda sid, patch: make_session(sid)
    client.update_step.side_effect = lambda sid, step: make_session(sid, step=step)
    return client


@pytest.fixture
def registry(api_client):
    return CheckoutRegistry(
        lambda: CheckoutService(
            api_client,
            analytics=MagicMock(),
            timer_factory=TimerFactory(),
            executor=InlineExecutor(),
        )
    )


@pytest.fixture
def http(registry, db_session, fake_redis):
    app.dependency_overrides[checkout_router.get_registry] = lambda: registry
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[payments_router.get_rate_limiter] = lambda: PaymentRateLimiter(max_attempts=2)
    app.dependency_overrides[guest_carts_router.get_guest_cart_repo] = lambda: GuestCartRepo(client=fake_redis)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


CUSTOMER = {"name": "Ada Obi", "email": "ada@example.com", "phone": "+2348000000000", "isGuest": True}


def test_health(http):
    assert http.get("/health").json() == {"status": "ok"}


# =====================================================
# Checkout
# =====================================================
def test_start_checkout_returns_camel_case_state(http, registry):
    resp = http.post("/checkout", json={"storeId": 7})

    assert resp.status_code == 201
    body = resp.json()
    assert body["sessionId"] == "sess-1"
    assert body["currentStep"] == "customer_info"
    assert body["completedSteps"] == []
    assert body["notices"] == [{"level": "success", "message": "Checkout initialized successfully"}]
    assert registry.get("sess-1") is not None


def test_start_checkout_rejects_invalid_store(http):
    assert http.post("/checkout", json={"storeId": 0}).status_code == 422


def test_step_navigation_is_gated(http):
    http.post("/checkout", json={"storeId": 7})

    resp = http.post("/checkout/sess-1/step", json={"step": "payment"})
    assert resp.status_code == 409

    http.put("/checkout/sess-1/customer-info", json=CUSTOMER)
    resp = http.post("/checkout/sess-1/steps/customer_info/complete")
    assert resp.status_code == 200
    assert resp.json()["currentStep"] == "shipping"
    assert resp.json()["customerInfo"]["name"] == "Ada Obi"

    nav = http.get("/checkout/sess-1/navigation").json()
    assert nav["canGoPrevious"] is True
    assert nav["previousStep"] == "customer_info"


@pytest.mark.parametrize(
    "path, payload",
    [
        ("customer-info", {"name": "Ada Obi", "email": "xyz", "phone": "+2348000000000"}),
        ("customer-info", {"name": "Ada Obi", "email": "ada@example.com", "phone": ""}),
        (
            "shipping-address",
            {"fullName": "Ada Obi", "address": "", "city": "", "state": "", "postalCode": "", "country": ""},
        ),
    ],
)
def test_incomplete_form_data_is_rejected(http, api_client, path, payload):
    http.post("/checkout", json={"storeId": 7})
    api_client.validate_step.reset_mock()

    resp = http.put(f"/checkout/sess-1/{path}", json=payload)

    assert resp.status_code == 422
    api_client.validate_step.assert_not_called()
    assert http.get("/checkout/sess-1").json()["customerInfo"] is None


def test_unknown_session_is_gone(http, api_client):
    api_client.get_session.side_effect = SessionExpiredError(session_id="nope")
    assert http.get("/checkout/nope").status_code == 410


def test_place_order(http, api_client, registry):
    http.post("/checkout", json={"storeId": 7})
    http.put("/checkout/sess-1/payment-method", json={"type": "card", "gateway": "paystack"})
    for step in ("customer_info", "shipping", "payment"):
        assert http.post(f"/checkout/sess-1/steps/{step}/complete").status_code == 200
    api_client.complete_checkout.return_value = CheckoutCompletionResult(
        order_id=55,
        order_number="ORD-20260101-007-000055",
        payment_url="https://checkout.paystack.com/abc",
    )

    resp = http.post("/checkout/sess-1/orders", json={"paymentReference": "PAY_55_1_x"})

    assert resp.status_code == 201
    assert resp.json()["orderNumber"] == "ORD-20260101-007-000055"
    assert registry.get("sess-1") is None


def test_place_order_before_review_conflicts(http):
    http.post("/checkout", json={"storeId": 7})
    assert http.post("/checkout/sess-1/orders", json={}).status_code == 409


def test_cancel_checkout(http, registry):
    http.post("/checkout", json={"storeId": 7})
    assert http.delete("/checkout/sess-1").status_code == 204
    assert registry.get("sess-1") is None
    assert http.delete("/checkout/sess-1").status_code == 404


# =====================================================
# Platnosci
# =====================================================
def test_payment_callback_route(http):
    verify = MagicMock(return_value=PaymentVerificationResult(success=True, reference="PAY_1", status="success"))
    app.dependency_overrides[payments_router.get_callback_handler] = lambda: PaymentCallbackHandler(verify)

    resp = http.get("/checkout/callback", params={"reference": "PAY_1", "popup": "true"})

    body = resp.json()
    assert resp.status_code == 200
    assert body["status"] == "success"
    assert body["closed"] is True
    assert body["openerMessages"][0]["data"]["type"] == "paystack_callback"


def test_payment_callback_without_reference(http):
    app.dependency_overrides[payments_router.get_callback_handler] = lambda: PaymentCallbackHandler(MagicMock())
    body = http.get("/checkout/callback").json()
    assert body["status"] == "failed"
    assert body["message"] == "Payment reference not found in callback URL"


PAYMENT = {"orderId": 12, "amount": "5000", "currency": "NGN", "method": "card", "gateway": "paystack"}


def test_prepare_payment_creates_attempt(http, db_session):
    resp = http.post("/payments/prepare", json={**PAYMENT, "metadata": {"note": "<b>gift</b>"}})

    assert resp.status_code == 201
    body = resp.json()
    assert body["reference"].startswith("PAY_12_")
    assert body["metadata"] == {"note": "bgift/b"}

    assert PaymentAttemptRepo(db_session).get_attempt(body["reference"]).status == "PENDING"


def test_prepare_payment_returns_all_validation_errors(http):
    resp = http.post(
        "/payments/prepare",
        json={"orderId": 0, "amount": "10", "currency": "JPY", "method": "crypto", "gateway": "stripe"},
    )
    assert resp.status_code == 400
    assert len(resp.json()["detail"]) == 5


def test_prepare_payment_is_rate_limited(http):
    limiter = PaymentRateLimiter(max_attempts=2)
    app.dependency_overrides[payments_router.get_rate_limiter] = lambda: limiter

    codes = [http.post("/payments/prepare", json=PAYMENT).status_code for _ in range(3)]

    assert codes == [201, 201, 429]


# =====================================================
# Koszyk goscia
# =====================================================
def test_guest_cart_flow(http):
    http.post("/guest-carts/g1/items", json={"storeId": 7, "productId": 1, "quantity": 2})
    resp = http.post("/guest-carts/g1/items", json={"storeId": 7, "productId": 1, "quantity": 3})

    assert resp.status_code == 201
    assert resp.json()["items"][0]["quantity"] == 5
    assert http.get("/guest-carts/g1/stores/7/count").json() == {"storeId": 7, "count": 5}

    assert http.patch("/guest-carts/g1/stores/7/items/1", json={"quantity": 0}).status_code == 204
    assert http.get("/guest-carts/g1/stores/7").status_code == 404


def test_guest_cart_sync_requires_token_and_keeps_failures(http):
    add_to_cart = MagicMock(side_effect=[None, CheckoutApiError("Out of stock", status_code=409)])
    api = MagicMock()
    api.add_to_cart.side_effect = add_to_cart
    app.dependency_overrides[guest_carts_router.get_checkout_client] = lambda: api

    http.post("/guest-carts/g1/items", json={"storeId": 7, "productId": 1})
    http.post("/guest-carts/g1/items", json={"storeId": 7, "productId": 2})

    assert http.post("/guest-carts/g1/sync/7").status_code == 422

    resp = http.post("/guest-carts/g1/sync/7", headers={"Authorization": "Bearer user-tok"})

    assert resp.json() == {"synced": 1, "failed": [2]}
    api.add_to_cart.assert_any_call(7, 1, 1, token="user-tok")
    assert http.get("/guest-carts/g1/stores/7/count").json()["count"] == 1
