# app/services/payment_security.py
"""
Zabezpieczenia platnosci po stronie klienta:
walidacja danych, referencje, rate limiting, sesja platnosci, mapowanie bledow API.
Bez sieci - czyste funkcje i male klasy ze stanem.
"""
import re
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import urlparse

import requests

from app.utils.settings import (
    PAYMENT_RATE_LIMIT_ATTEMPTS,
    PAYMENT_RATE_LIMIT_WINDOW_SECONDS,
    PAYMENT_SESSION_TTL_SECONDS,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_PAYMENT_DOMAINS = (
    "checkout.paystack.com",
    "api.paystack.co",
    "checkout.flutterwave.com",
    "api.flutterwave.com",
    "basepay.app",
    "api.basepay.app",
    "localhost",
)

_REF_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class PaymentValidationRules:
    #kwoty w najmniejszych jednostkach waluty (kobo / centy)
    amount_min: Decimal = Decimal(50)
    amount_max: Decimal = Decimal(10_000_000)
    currencies: Tuple[str, ...] = ("NGN", "USD", "EUR", "GBP")
    methods: Tuple[str, ...] = ("card", "bank_transfer", "wallet")
    gateways: Tuple[str, ...] = ("paystack", "flutterwave", "basepay")


DEFAULT_PAYMENT_RULES = PaymentValidationRules()


class PaymentValidator:
    def __init__(self, rules: PaymentValidationRules = DEFAULT_PAYMENT_RULES):
        self.rules = rules

    def validate_amount(self, amount: Any) -> str | None:
        if isinstance(amount, bool):
            return "Amount must be a valid number"
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            return "Amount must be a valid number"
        if not value.is_finite():
            return "Amount must be a valid number"

        if value < self.rules.amount_min:
            return f"Amount must be at least {self.rules.amount_min}"
        if value > self.rules.amount_max:
            return f"Amount cannot exceed {self.rules.amount_max}"
        return None

    def validate_currency(self, currency: Any) -> str | None:
        if not currency or not isinstance(currency, str):
            return "Currency is required"
        if currency.upper() not in self.rules.currencies:
            return f"Currency {currency} is not supported"
        return None

    def validate_method(self, method: Any) -> str | None:
        if not method or not isinstance(method, str):
            return "Payment method is required"
        if method.lower() not in self.rules.methods:
            return f"Payment method {method} is not supported"
        return None

    def validate_gateway(self, gateway: Any) -> str | None:
        if not gateway or not isinstance(gateway, str):
            return "Payment gateway is required"
        if gateway.lower() not in self.rules.gateways:
            return f"Payment gateway {gateway} is not supported"
        return None

    def validate_payment_data(
        self,
        amount: Any,
        currency: Any,
        method: Any,
        gateway: Any,
        order_id: Any,
    ) -> Tuple[bool, List[str]]:
        """
        Sprawdza wszystkie pola niezaleznie i zbiera WSZYSTKIE bledy,
        zeby UI moglo pokazac je naraz.
        """
        errors: List[str] = []

        if isinstance(order_id, bool) or not isinstance(order_id, int) or order_id <= 0:
            errors.append("Valid order ID is required")

        for check in (
            self.validate_amount(amount),
            self.validate_currency(currency),
            self.validate_method(method),
            self.validate_gateway(gateway),
        ):
            if check:
                errors.append(check)

        return len(errors) == 0, errors


def generate_payment_reference(order_id: int, timestamp: int | None = None) -> str:
    # sufiks losowy to tylko pomoc przy unikalnosci, nie gwarancja
    ts = timestamp or int(time.time() * 1000)
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(13))
    return f"PAY_{order_id}_{ts}_{suffix}"


_UNSAFE_CHARS = re.compile(r"[<>\"'&]")


def sanitize_payment_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if isinstance(value, str):
            sanitized[key] = _UNSAFE_CHARS.sub("", value)
        elif isinstance(value, (bool, int, float)):
            sanitized[key] = value
        #inne typy (listy, slowniki, None) sa odrzucane
    return sanitized


def get_secure_headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Requested-With": "XMLHttpRequest",
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
    }


def validate_payment_url(url: str, allowed_domains: Tuple[str, ...] = ALLOWED_PAYMENT_DOMAINS) -> bool:
    """Chroni przed open redirect - tylko znane domeny bramek (albo ich subdomeny)."""
    try:
        parsed = urlparse(url)
        hostname = (parsed.hostname or "").lower()
    except (ValueError, TypeError, AttributeError):
        return False

    if parsed.scheme not in ("http", "https") or not hostname:
        return False

    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in allowed_domains)


class PaymentRateLimiter:
    """
    Licznik prob w stalym oknie (fixed window) per identyfikator (user / IP).
    Po uplywie okna licznik resetuje sie w calosci.
    """

    def __init__(
        self,
        max_attempts: int = PAYMENT_RATE_LIMIT_ATTEMPTS,
        window_seconds: float = PAYMENT_RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock
        self._attempts: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def can_attempt(self, identifier: str) -> bool:
        now = self.clock()
        with self._lock:
            record = self._attempts.get(identifier)

            if record is None or now - record[1] >= self.window_seconds:
                self._attempts[identifier] = (1, now)
                return True

            count, window_start = record
            if count < self.max_attempts:
                self._attempts[identifier] = (count + 1, window_start)
                return True

        logger.warning(f"Payment rate limit hit for {identifier}")
        return False

    def remaining_time(self, identifier: str) -> float:
        with self._lock:
            record = self._attempts.get(identifier)
        if record is None:
            return 0.0
        return max(0.0, self.window_seconds - (self.clock() - record[1]))

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)


@dataclass
class PaymentSession:
    """Krotki token chroniacy pojedyncze podejscie do platnosci (domyslnie 30 min)."""

    duration_seconds: float = PAYMENT_SESSION_TTL_SECONDS
    clock: Callable[[], float] = time.time
    session_id: str = field(init=False)
    created_at: float = field(init=False)
    expires_at: float = field(init=False)

    def __post_init__(self):
        self.created_at = self.clock()
        self.expires_at = self.created_at + self.duration_seconds
        self.session_id = f"ps_{int(self.created_at * 1000):x}_{secrets.token_hex(6)}"

    def is_valid(self) -> bool:
        return self.clock() < self.expires_at

    def remaining_time(self) -> float:
        return max(0.0, self.expires_at - self.clock())

    def extend(self, additional_seconds: float = 15 * 60) -> None:
        self.expires_at = max(self.expires_at, self.clock()) + additional_seconds


class PaymentError(Exception):
    def __init__(
        self,
        message: str,
        code: str = "PAYMENT_ERROR",
        retryable: bool = False,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details

    @classmethod
    def from_api_error(cls, error: Exception) -> "PaymentError":
        response = getattr(error, "response", None)
        status = getattr(error, "status_code", None)
        if status is None and response is not None:
            status = response.status_code

        if status == 429:
            return cls("Too many payment attempts. Please try again later.", "RATE_LIMITED", True)

        if status is not None and status >= 500:
            return cls("Payment service temporarily unavailable. Please try again.", "SERVICE_UNAVAILABLE", True)

        if status is not None and 400 <= status < 500:
            message = _response_message(response) or "Invalid payment data"
            return cls(message, "INVALID_DATA", False)

        return cls(str(error) or "Payment processing failed", "UNKNOWN_ERROR", False)


def _response_message(response: requests.Response | None) -> str | None:
    if response is None:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message")
    return None


payment_validator = PaymentValidator()
