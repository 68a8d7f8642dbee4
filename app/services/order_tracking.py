# app/services/order_tracking.py
"""
Numery zamowien, linki do sledzenia / paragonu / supportu i statusy zamowien.
Same czyste funkcje - zadnego I/O.
"""
import math
import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Literal
from urllib.parse import quote, urlencode, urljoin

from app.utils.settings import APP_URL

ORDER_NUMBER_RE = re.compile(r"^ORD-(\d{4})(\d{2})(\d{2})-(\d{3})-(\d{6})$")

ShippingMethod = Literal["standard", "express", "overnight"]

SHIPPING_BUSINESS_DAYS: Dict[str, int] = {
    "overnight": 1,
    "express": 2,
    "standard": 5,
}

RETURN_WINDOW_DAYS = 14
CANCELLABLE_STATUSES = ("PENDING", "PENDING_PAYMENT", "PROCESSING", "CONFIRMED")


class OrderStatusCategory(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    UNKNOWN = "unknown"


_STATUS_CATEGORY = {
    "PENDING": OrderStatusCategory.PENDING,
    "PENDING_PAYMENT": OrderStatusCategory.PENDING,
    "PROCESSING": OrderStatusCategory.PROCESSING,
    "CONFIRMED": OrderStatusCategory.PROCESSING,
    "SHIPPED": OrderStatusCategory.IN_TRANSIT,
    "IN_TRANSIT": OrderStatusCategory.IN_TRANSIT,
    "DELIVERED": OrderStatusCategory.DELIVERED,
    "COMPLETED": OrderStatusCategory.DELIVERED,
    "CANCELLED": OrderStatusCategory.CANCELLED,
    "REFUNDED": OrderStatusCategory.CANCELLED,
    "RETURNED": OrderStatusCategory.RETURNED,
}

_STATUS_TEXT = {
    "PENDING": "Order Pending",
    "PENDING_PAYMENT": "Awaiting Payment",
    "PROCESSING": "Processing Order",
    "CONFIRMED": "Order Confirmed",
    "SHIPPED": "Shipped",
    "IN_TRANSIT": "In Transit",
    "DELIVERED": "Delivered",
    "COMPLETED": "Completed",
    "CANCELLED": "Cancelled",
    "REFUNDED": "Refunded",
    "RETURNED": "Returned",
}


# =====================================================
# Numer zamowienia
# =====================================================
def generate_order_number(store_id: int, order_id: int, today: date | None = None) -> str:
    """Format: ORD-YYYYMMDD-SSS-OOOOOO (sklep i zamowienie dopelnione zerami)."""
    today = today or datetime.now(timezone.utc).date()
    return f"ORD-{today:%Y%m%d}-{store_id:03d}-{order_id:06d}"


def parse_order_number(order_number: str) -> Dict[str, int] | None:
    match = ORDER_NUMBER_RE.match(order_number)
    if not match:
        return None
    year, month, day, store_id, order_id = (int(g) for g in match.groups())
    return {"year": year, "month": month, "day": day, "store_id": store_id, "order_id": order_id}


def is_valid_order_number(order_number: str) -> bool:
    return ORDER_NUMBER_RE.match(order_number) is not None


def format_order_number(order_number: str) -> str:
    normalized = order_number.strip().upper()
    if not is_valid_order_number(normalized):
        return order_number
    return normalized


# =====================================================
# Linki
# =====================================================
def _build_url(path: str, params: Dict[str, str], base_url: str | None = None) -> str:
    url = urljoin((base_url or APP_URL).rstrip("/") + "/", path.lstrip("/"))
    query = {k: v for k, v in params.items() if v}
    return f"{url}?{urlencode(query)}" if query else url


def _utm_params(utm: Dict[str, str] | None) -> Dict[str, str]:
    if not utm:
        return {}
    return {f"utm_{key}": utm[key] for key in ("source", "medium", "campaign") if utm.get(key)}


def _store_path(store_slug: str | None, path: str) -> str:
    return f"/store/{quote(store_slug, safe='')}{path}" if store_slug else path


def generate_tracking_url(
    order_number: str,
    store_slug: str | None = None,
    include_auth: bool = False,
    redirect_url: str | None = None,
    utm: Dict[str, str] | None = None,
    base_url: str | None = None,
) -> str:
    path = _store_path(store_slug, f"/orders/track/{quote(order_number, safe='')}")
    params = {
        "auth": "required" if include_auth else "",
        "redirect": redirect_url or "",
        **_utm_params(utm),
    }
    return _build_url(path, params, base_url)


def generate_guest_tracking_url(
    order_number: str,
    email: str,
    store_slug: str | None = None,
    redirect_url: str | None = None,
    utm: Dict[str, str] | None = None,
    base_url: str | None = None,
) -> str:
    #gosc potwierdza zamowienie emailem
    path = _store_path(store_slug, f"/orders/guest-track/{quote(order_number, safe='')}")
    params = {"email": email, "redirect": redirect_url or "", **_utm_params(utm)}
    return _build_url(path, params, base_url)


def generate_receipt_url(
    order_number: str,
    store_slug: str | None = None,
    format: Literal["html", "pdf"] = "html",
    base_url: str | None = None,
) -> str:
    path = _store_path(store_slug, f"/orders/receipt/{quote(order_number, safe='')}")
    params = {"format": "pdf" if format == "pdf" else ""}
    return _build_url(path, params, base_url)


def generate_support_url(
    order_number: str,
    store_slug: str | None = None,
    issue: str | None = None,
    base_url: str | None = None,
) -> str:
    path = _store_path(store_slug, "/support")
    return _build_url(path, {"order": order_number, "issue": issue or ""}, base_url)


# =====================================================
# Daty
# =====================================================
def _as_datetime(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def get_order_age(created_at: datetime | str, now: datetime | None = None) -> int:
    """Wiek zamowienia w dniach, zaokraglony w gore (zamowienie sprzed godziny = 1 dzien)."""
    now = _as_datetime(now or datetime.now(timezone.utc))
    diff = abs((now - _as_datetime(created_at)).total_seconds())
    return math.ceil(diff / 86400)


def get_estimated_delivery_date(order_date: datetime | str, shipping_method: ShippingMethod = "standard") -> datetime:
    business_days = SHIPPING_BUSINESS_DAYS.get(shipping_method, SHIPPING_BUSINESS_DAYS["standard"])
    delivery = _as_datetime(order_date)

    added = 0
    while added < business_days:
        delivery += timedelta(days=1)
        # pomijamy sobote i niedziele
        if delivery.weekday() < 5:
            added += 1
    return delivery


def format_delivery_date(value: datetime | str) -> str:
    #np. "Friday, March 15, 2024"
    d = _as_datetime(value)
    return f"{d:%A}, {d:%B} {d.day}, {d.year}"


# =====================================================
# Statusy
# =====================================================
def get_order_status_category(status: str) -> OrderStatusCategory:
    return _STATUS_CATEGORY.get(status.upper(), OrderStatusCategory.UNKNOWN)


def get_order_status_text(status: str) -> str:
    text = _STATUS_TEXT.get(status.upper())
    if text is not None:
        return text
    return status[:1].upper() + status[1:].lower()


def can_cancel_order(status: str) -> bool:
    return status.upper() in CANCELLABLE_STATUSES


def can_return_order(status: str, delivery_date: datetime | str | None = None, now: datetime | None = None) -> bool:
    if status.upper() != "DELIVERED" or not delivery_date:
        return False

    now = _as_datetime(now or datetime.now(timezone.utc))
    days_since_delivery = math.floor((now - _as_datetime(delivery_date)).total_seconds() / 86400)
    return days_since_delivery <= RETURN_WINDOW_DAYS


def generate_tracking_event_description(status: str, location: str | None = None, carrier: str | None = None) -> str:
    description = get_order_status_text(status)
    if location and carrier:
        return f"{description} - {location} ({carrier})"
    if location:
        return f"{description} - {location}"
    if carrier:
        return f"{description} ({carrier})"
    return description
