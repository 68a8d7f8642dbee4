# app/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CheckoutStep(str, Enum):
    CUSTOMER_INFO = "customer_info"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    REVIEW = "review"


class PaymentMethodType(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"


class PaymentGateway(str, Enum):
    PAYSTACK = "paystack"
    FLUTTERWAVE = "flutterwave"
    BASEPAY = "basepay"


class CallbackStatus(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ApiModel(BaseModel):
    """Wspolna konfiguracja - zewnetrzne API mowi camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =====================================================
# Checkout session (rekord po stronie serwera)
# =====================================================
class CheckoutItem(ApiModel):
    product_id: int = Field(..., gt=0)
    variant_id: int | None = None
    quantity: int = Field(..., gt=0)
    unit_price: Decimal | None = None


class CustomerInfo(ApiModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=10)
    is_guest: bool = False


class ShippingAddress(ApiModel):
    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: str | None = None


class PaymentMethod(ApiModel):
    type: PaymentMethodType
    gateway: PaymentGateway


class CheckoutTotals(ApiModel):
    subtotal: Decimal
    shipping: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    total: Decimal


class AvailableItem(ApiModel):
    product_id: int
    variant_id: int | None = None
    available_quantity: int
    requested_quantity: int


class CheckoutValidationResult(ApiModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    available_items: List[AvailableItem] = Field(default_factory=list)


class CheckoutSessionData(ApiModel):
    items: List[CheckoutItem] = Field(default_factory=list)
    customer_info: CustomerInfo | None = None
    shipping_address: ShippingAddress | None = None
    payment_method: PaymentMethod | None = None
    totals: CheckoutTotals | None = None


class CheckoutSession(ApiModel):
    id: str
    store_id: int
    step: CheckoutStep = CheckoutStep.CUSTOMER_INFO
    data: CheckoutSessionData = Field(default_factory=CheckoutSessionData)
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CheckoutSessionPatch(ApiModel):
    """Czesciowa aktualizacja sesji - wysylane sa tylko ustawione pola (shallow merge)."""

    customer_info: CustomerInfo | None = None
    shipping_address: ShippingAddress | None = None
    payment_method: PaymentMethod | None = None
    totals: CheckoutTotals | None = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InitializeCheckoutResult(ApiModel):
    session: CheckoutSession
    validation: CheckoutValidationResult
    totals: CheckoutTotals


class StepValidationResult(ApiModel):
    validation: CheckoutValidationResult
    totals: CheckoutTotals


class CheckoutCompletionResult(ApiModel):
    order_id: int
    order_number: str
    payment_reference: str | None = None
    payment_url: str | None = None
    status: str = "pending"


class PaymentVerificationResult(ApiModel):
    success: bool
    reference: str | None = None
    status: str | None = None
    message: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime | None = None


class CartItem(ApiModel):
    """Pozycja autoryzowanego koszyka zwracana przez API sklepu."""

    id: int | None = None
    product_id: int
    quantity: int


# =====================================================
# Guest cart (lokalny, bez cen)
# =====================================================
class GuestCartItem(ApiModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    store_id: int
    added_at: datetime


class GuestCart(ApiModel):
    store_id: int
    items: List[GuestCartItem] = Field(default_factory=list)
    updated_at: datetime


class GuestCartSyncResult(ApiModel):
    synced: int = 0
    failed: List[int] = Field(default_factory=list)


# =====================================================
# HTTP in/out
# =====================================================
class InitializeCheckoutIn(ApiModel):
    """Schema dla rozpoczecia checkoutu."""

    store_id: int = Field(..., gt=0, description="ID sklepu (musi byc > 0)")


class GoToStepIn(ApiModel):
    step: CheckoutStep


class PlaceOrderIn(ApiModel):
    payment_reference: str | None = None


class GuestCartItemIn(ApiModel):
    """Schema dla dodawania produktu do koszyka goscia."""

    store_id: int = Field(..., gt=0)
    product_id: int = Field(..., gt=0, description="ID produktu (musi byc > 0)")
    quantity: int = Field(1, gt=0, description="Ilosc produktu (musi byc > 0)")


class GuestCartItemUpdate(ApiModel):
    quantity: int


class GuestCartCountOut(ApiModel):
    store_id: int | None = None
    count: int


class PreparePaymentIn(ApiModel):
    """Schema dla przygotowania platnosci (walidacja + referencja)."""

    order_id: int
    amount: Decimal
    currency: str
    method: str
    gateway: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PreparePaymentOut(ApiModel):
    reference: str
    gateway: str
    expires_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NavigationOut(ApiModel):
    current_step: CheckoutStep
    current_step_index: int
    total_steps: int
    can_go_next: bool
    can_go_previous: bool
    next_step: CheckoutStep | None = None
    previous_step: CheckoutStep | None = None


class CheckoutStateOut(ApiModel):
    """Schema dla stanu checkoutu (response)."""

    session_id: str | None = None
    store_id: int | None = None
    current_step: CheckoutStep
    completed_steps: List[CheckoutStep]
    customer_info: CustomerInfo | None = None
    shipping_address: ShippingAddress | None = None
    payment_method: PaymentMethod | None = None
    validation: CheckoutValidationResult | None = None
    totals: CheckoutTotals | None = None
    warnings: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
    validation_error: str | None = None
    session_error: str | None = None
    is_initializing: bool = False
    is_saving: bool = False
    is_validating: bool = False
    is_completing: bool = False
    notices: List[Dict[str, str]] = Field(default_factory=list)


class CallbackOut(ApiModel):
    """Schema dla wyniku callbacku bramki platnosci."""

    status: CallbackStatus
    message: str
    reference: str | None = None
    gateway: str
    opener_messages: List[Dict[str, Any]] = Field(default_factory=list)
    closed: bool = False
    redirect_url: str | None = None
    redirect_delay_seconds: float | None = None
