# tests/test_payment_callback.py
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.domain.errors import CheckoutApiError
from app.domain.schemas import CallbackStatus, PaymentVerificationResult
from app.repos.payment_attempt_repo import PaymentAttemptRepo
from app.services.lock_service import LockService
from app.services.payment_callback import (
    CANCELLED_MESSAGE,
    IN_PROGRESS_MESSAGE,
    MISSING_REFERENCE_MESSAGE,
    SUCCESS_MESSAGE,
    CallbackWindow,
    PaymentCallbackHandler,
)


def verified(success=True, status="success", message=None):
    return PaymentVerificationResult(success=success, reference="PAY_1", status=status, message=message)


@pytest.fixture
def verify():
    return MagicMock(return_value=verified())


def test_missing_reference_fails_without_verifying(verify):
    outcome = PaymentCallbackHandler(verify).handle({"status": "success"})

    assert outcome.status == CallbackStatus.FAILED
    assert outcome.message == MISSING_REFERENCE_MESSAGE
    verify.assert_not_called()


def test_cancelled_payment_is_not_verified(verify):
    outcome = PaymentCallbackHandler(verify).handle({"reference": "PAY_1", "status": "canceled"})

    assert outcome.status == CallbackStatus.CANCELLED
    assert outcome.message == CANCELLED_MESSAGE
    verify.assert_not_called()


def test_successful_verification_redirects_after_delay(verify):
    window = CallbackWindow()
    outcome = PaymentCallbackHandler(verify, redirect_delay=2).handle({"trxref": "PAY_1"}, window)

    assert outcome.status == CallbackStatus.SUCCESS
    assert outcome.message == SUCCESS_MESSAGE
    assert outcome.gateway == "paystack"
    verify.assert_called_once_with("PAY_1")
    assert window.redirect_url == "/checkout/success?reference=PAY_1"
    assert window.redirect_delay_seconds == 2
    assert window.opener_messages == []


@pytest.mark.parametrize("param", ["reference", "tx_ref", "trxref"])
def test_reference_read_from_any_gateway_param(verify, param):
    PaymentCallbackHandler(verify).handle({param: "PAY_1"})
    verify.assert_called_once_with("PAY_1")


def test_unsuccessful_verification_uses_server_message(verify):
    verify.return_value = verified(success=True, status="abandoned", message="Transaction abandoned")
    outcome = PaymentCallbackHandler(verify).handle({"reference": "PAY_1"})

    assert outcome.status == CallbackStatus.FAILED
    assert outcome.message == "Transaction abandoned"


def test_unsuccessful_verification_without_message_uses_default(verify):
    verify.return_value = verified(success=False, status="failed")
    outcome = PaymentCallbackHandler(verify).handle({"reference": "PAY_1"})
    assert outcome.message == "Payment verification failed"


def test_verification_exception_message_is_preserved(verify):
    verify.side_effect = CheckoutApiError("Gateway timeout", status_code=504)
    window = CallbackWindow()

    outcome = PaymentCallbackHandler(verify).handle({"reference": "PAY_1"}, window)

    assert outcome.status == CallbackStatus.FAILED
    assert outcome.message == "Gateway timeout"
    assert window.redirect_url is None


def test_popup_posts_result_to_opener_and_closes(verify):
    window = CallbackWindow(is_popup=True, origin="https://shop.test")

    PaymentCallbackHandler(verify).handle({"reference": "PAY_1", "gateway": "flutterwave"}, window)

    assert window.closed is True
    assert window.redirect_url is None
    assert window.opener_messages == [
        {
            "targetOrigin": "https://shop.test",
            "data": {"type": "flutterwave_callback", "reference": "PAY_1", "status": "success"},
        }
    ]


def test_popup_is_notified_about_cancellation(verify):
    window = CallbackWindow(is_popup=True, origin="https://shop.test")
    PaymentCallbackHandler(verify).handle({"reference": "PAY_1", "status": "cancelled"}, window)
    assert window.opener_messages[0]["data"]["status"] == "cancelled"
    assert window.closed is True


# =====================================================
# Idempotencja
# =====================================================
def test_repeated_callback_returns_stored_outcome(verify, db_session):
    repo = PaymentAttemptRepo(db_session)
    repo.create_attempt("PAY_1", order_id=1, gateway="paystack")
    handler = PaymentCallbackHandler(verify, attempt_repo=repo)

    first = handler.handle({"reference": "PAY_1"})
    second = handler.handle({"reference": "PAY_1"})

    assert first.status == second.status == CallbackStatus.SUCCESS
    verify.assert_called_once()
    assert repo.get_attempt("PAY_1").status == "SUCCESS"


def test_transport_failure_is_not_stored(verify, db_session):
    repo = PaymentAttemptRepo(db_session)
    verify.side_effect = [CheckoutApiError("timeout"), verified()]
    handler = PaymentCallbackHandler(verify, attempt_repo=repo)

    assert handler.handle({"reference": "PAY_1"}).status == CallbackStatus.FAILED
    assert handler.handle({"reference": "PAY_1"}).status == CallbackStatus.SUCCESS
    assert verify.call_count == 2


def test_concurrent_callback_loses_lock(verify, fake_redis):
    lock = LockService(client=fake_redis)
    assert lock.acquire_callback_lock("PAY_1", "other-worker")

    outcome = PaymentCallbackHandler(verify, lock_service=lock).handle({"reference": "PAY_1"})

    assert outcome.status == CallbackStatus.FAILED
    assert outcome.message == IN_PROGRESS_MESSAGE
    verify.assert_not_called()


def test_lock_is_released_after_verification(verify, fake_redis):
    lock = LockService(client=fake_redis)
    PaymentCallbackHandler(verify, lock_service=lock).handle({"reference": "PAY_1"})

    assert fake_redis.store == {}
    assert fake_redis.ttl[LockService.callback_lock_key("PAY_1")] == 60


def test_redis_outage_does_not_block_verification(verify):
    lock = MagicMock()
    lock.acquire_callback_lock.side_effect = RedisConnectionError("down")

    outcome = PaymentCallbackHandler(verify, lock_service=lock).handle({"reference": "PAY_1"})

    assert outcome.status == CallbackStatus.SUCCESS
    lock.release_callback_lock.assert_not_called()
