# tests/conftest.py
"""
Wspolne fixtures testow.

Srodowisko ustawiamy PRZED importem app.*, bo app.utils.settings czyta env
przy imporcie: SQLite w pamieci zamiast Postgresa i Celery w trybie eager.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import json
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List

import pytest

from app.data.database import Base, SessionLocal, engine
from app.data.models import PaymentAttemptModel  # noqa: F401 - rejestracja w metadata
from app.domain.schemas import (
    CheckoutItem,
    CheckoutSession,
    CheckoutSessionData,
    CheckoutTotals,
    CheckoutValidationResult,
    CustomerInfo,
    PaymentMethod,
    ShippingAddress,
)


# =====================================================
# Czas i watki
# =====================================================
class FakeTimer:
    """Zamiast threading.Timer - test sam decyduje kiedy timer "odpala"."""

    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.cancelled = False
        self.started = False
        self.daemon = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class TimerFactory:
    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire_all(self):
        for timer in list(self.timers):
            timer.fire()


class InlineExecutor:
    """Executor wykonujacy zadanie od razu w biezacym watku."""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append((fn, args, kwargs))
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def timer_factory():
    return TimerFactory()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def fake_clock():
    return FakeClock()


# =====================================================
# Redis
# =====================================================
class FakeRedis:
    """Minimalny redis w pamieci: get/set/delete/publish + SET NX dla lockow."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.ttl: Dict[str, int] = {}
        self.published: List[tuple] = []

    def get(self, key):
        value = self.store.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    def set(self, name, value, ex=None, nx=False):
        if nx and name in self.store:
            return None
        self.store[name] = value
        if ex is not None:
            self.ttl[name] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    def eval(self, script, numkeys, key, owner):
        if self.store.get(key) == owner:
            del self.store[key]
            return 1
        return 0


@pytest.fixture
def fake_redis():
    return FakeRedis()


# =====================================================
# Baza
# =====================================================
@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


# =====================================================
# Dane checkoutu
# =====================================================
def make_items() -> List[CheckoutItem]:
    return [
        CheckoutItem(product_id=1, quantity=2, unit_price=Decimal("1500")),
        CheckoutItem(product_id=2, quantity=1, unit_price=Decimal("3000")),
    ]


def make_totals() -> CheckoutTotals:
    return CheckoutTotals(
        subtotal=Decimal("6000"),
        shipping=Decimal("500"),
        tax=Decimal("0"),
        discount=Decimal("0"),
        total=Decimal("6500"),
    )


def make_validation(is_valid: bool = True, errors=None, warnings=None) -> CheckoutValidationResult:
    return CheckoutValidationResult(
        is_valid=is_valid,
        errors=errors or [],
        warnings=warnings or [],
        available_items=[],
    )


def make_session(session_id: str = "sess-1", store_id: int = 7, step="customer_info", expires_in=3600, **data):
    return CheckoutSession(
        id=session_id,
        store_id=store_id,
        step=step,
        data=CheckoutSessionData(items=data.pop("items", make_items()), **data),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )


def make_customer(name: str = "Ada Obi") -> CustomerInfo:
    return CustomerInfo(name=name, email="ada@example.com", phone="+2348000000000", is_guest=True)


def make_address() -> ShippingAddress:
    return ShippingAddress(
        full_name="Ada Obi",
        address="12 Marina Road",
        city="Lagos",
        state="Lagos",
        postal_code="100001",
        country="NG",
        phone="+2348000000000",
    )


def make_payment_method() -> PaymentMethod:
    return PaymentMethod(type="card", gateway="paystack")
