# app/services/checkout_client.py
from typing import Any, Dict, List
from urllib.parse import quote

import requests
from requests import RequestException

from app.domain.errors import CheckoutApiError, InitializationError, SessionExpiredError
from app.domain.schemas import (
    CartItem,
    CheckoutCompletionResult,
    CheckoutItem,
    CheckoutSession,
    CheckoutSessionPatch,
    CheckoutStep,
    CheckoutTotals,
    CheckoutValidationResult,
    InitializeCheckoutResult,
    PaymentMethod,
    PaymentVerificationResult,
    ShippingAddress,
    StepValidationResult,
)
from app.services.payment_security import get_secure_headers
from app.utils.retry import RETRYABLE_STATUS_CODES, http_retry
from app.utils.settings import CHECKOUT_API_URL, CHECKOUT_API_TIMEOUT
from app.utils.logging import get_logger

logger = get_logger(__name__)

#sesja nie istnieje albo wygasla
SESSION_GONE_CODES = (404, 410)


def _unwrap(body: Any) -> Any:
    #API czasem owija odpowiedz w {success, data, message}
    if isinstance(body, dict) and "data" in body and ("success" in body or "message" in body):
        return body["data"]
    return body


def _to_api_error(exc: RequestException) -> CheckoutApiError:
    response = getattr(exc, "response", None)
    if response is None:
        return CheckoutApiError(str(exc) or "Network error", retryable=True)

    message = None
    errors: List[str] = []
    try:
        body = response.json()
        if isinstance(body, dict):
            message = body.get("message")
            errors = body.get("errors") or []
    except ValueError:
        pass

    status = response.status_code
    return CheckoutApiError(
        message or f"Request failed with status {status}",
        status_code=status,
        errors=errors,
        retryable=status in RETRYABLE_STATUS_CODES,
    )


class CheckoutApiClient:
    """
    Klient zewnetrznego REST API sklepu: sesje checkoutu, walidacja i sumy,
    zamowienia, weryfikacja platnosci, autoryzowany koszyk.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: int = CHECKOUT_API_TIMEOUT,
        token: str | None = None,
        http: requests.Session | None = None,
    ):
        self.base_url = (base_url or CHECKOUT_API_URL).rstrip("/")
        self.timeout = timeout
        self.token = token
        self.http = http or requests.Session()

    def _headers(self, secure: bool = False, token: str | None = None) -> Dict[str, str]:
        headers = get_secure_headers() if secure else {"Content-Type": "application/json"}
        bearer = token or self.token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    @http_retry()
    def _send(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"CheckoutApiClient {method} {url}")

        resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        resp.raise_for_status()
        if not resp.content:
            return None
        return _unwrap(resp.json())

    def _request(self, method: str, path: str, *, secure: bool = False, token: str | None = None, **kwargs) -> Any:
        try:
            return self._send(method, path, headers=self._headers(secure, token), **kwargs)
        except RequestException as e:
            logger.error(f"CheckoutApiClient {method} {path} failed: {e}")
            raise _to_api_error(e) from e

    def _session_request(self, method: str, session_id: str, path: str, **kwargs) -> Any:
        try:
            return self._request(method, path, **kwargs)
        except CheckoutApiError as e:
            if e.status_code in SESSION_GONE_CODES:
                raise SessionExpiredError(str(e), session_id=session_id) from e
            raise

    # =====================================================
    # Sesja checkoutu
    # =====================================================
    def initialize_checkout(self, store_id: int) -> InitializeCheckoutResult:
        try:
            body = self._request("POST", "/checkout/initialize", json={"storeId": store_id})
        except CheckoutApiError as e:
            #400/404/422 = sklep nieaktywny / nie istnieje / pusty koszyk
            if e.status_code is not None and 400 <= e.status_code < 500:
                raise InitializationError(str(e), status_code=e.status_code) from e
            raise
        return InitializeCheckoutResult.model_validate(body)

    def get_session(self, session_id: str) -> CheckoutSession:
        body = self._session_request("GET", session_id, f"/checkout/session/{quote(session_id, safe='')}")
        return CheckoutSession.model_validate(body)

    def update_session_data(self, session_id: str, patch: CheckoutSessionPatch) -> CheckoutSession:
        body = self._session_request(
            "PATCH",
            session_id,
            f"/checkout/session/{quote(session_id, safe='')}",
            json=patch.to_payload(),
        )
        return CheckoutSession.model_validate(body)

    def update_step(self, session_id: str, step: CheckoutStep) -> CheckoutSession:
        body = self._session_request(
            "PATCH",
            session_id,
            f"/checkout/session/{quote(session_id, safe='')}/step",
            json={"step": CheckoutStep(step).value},
        )
        return CheckoutSession.model_validate(body)

    def validate_step(
        self,
        store_id: int,
        items: List[CheckoutItem],
        shipping_address: ShippingAddress | None = None,
    ) -> StepValidationResult:
        payload: Dict[str, Any] = {
            "storeId": store_id,
            "items": [i.model_dump(mode="json", by_alias=True, exclude_none=True) for i in items],
        }
        if shipping_address is not None:
            payload["shippingAddress"] = shipping_address.model_dump(mode="json", by_alias=True, exclude_none=True)

        validation = self._request("POST", "/checkout/validate", json=payload)
        totals = self._request("POST", "/checkout/calculate", json=payload)
        return StepValidationResult(
            validation=CheckoutValidationResult.model_validate(validation),
            totals=CheckoutTotals.model_validate(totals),
        )

    def complete_checkout(
        self,
        session_id: str,
        payment_method: PaymentMethod,
        payment_reference: str | None = None,
    ) -> CheckoutCompletionResult:
        payload: Dict[str, Any] = {
            "sessionId": session_id,
            "paymentMethod": payment_method.model_dump(mode="json", by_alias=True),
        }
        if payment_reference:
            payload["paymentReference"] = payment_reference

        body = self._session_request("POST", session_id, "/checkout/complete", json=payload, secure=True)
        return CheckoutCompletionResult.model_validate(body)

    # =====================================================
    # Platnosci i koszyk
    # =====================================================
    def verify_payment(self, reference: str) -> PaymentVerificationResult:
        body = self._request("GET", f"/payments/verify/{quote(reference, safe='')}", secure=True)
        return PaymentVerificationResult.model_validate(body)

    def add_to_cart(self, store_id: int, product_id: int, quantity: int, token: str | None = None) -> CartItem:
        body = self._request(
            "POST",
            f"/cart/{store_id}/items",
            json={"productId": product_id, "quantity": quantity},
            token=token,
        )
        return CartItem.model_validate(body)
