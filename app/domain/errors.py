# app/domain/errors.py
from typing import List


class CheckoutError(Exception):
    """Bazowy blad domeny checkoutu."""


class InitializationError(CheckoutError):
    """Checkout nie moze wystartowac (sklep nieaktywny / nie istnieje, pusty koszyk)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(CheckoutError):
    """Sesja checkoutu wygasla (TTL albo serwer zwrocil 404/410)."""

    def __init__(self, message: str = "Checkout session has expired", session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class CheckoutApiError(CheckoutError):
    """Blad transportu / odpowiedz != 2xx z zewnetrznego API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: List[str] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
        self.retryable = retryable


class PaymentVerificationError(CheckoutError):
    """Weryfikacja platnosci w bramce nie powiodla sie."""

    def __init__(self, message: str, reference: str | None = None):
        super().__init__(message)
        self.reference = reference


class PaymentDataValidationError(CheckoutError):
    """Walidacja danych platnosci po stronie klienta - wszystkie bledy naraz."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Invalid payment data")
        self.errors = list(errors)
