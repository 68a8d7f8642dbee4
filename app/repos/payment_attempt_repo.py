# app/repos/payment_attempt_repo.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from app.data.models.payment_attempt import PaymentAttemptModel

PENDING = "PENDING"
TERMINAL_STATUSES = ("SUCCESS", "FAILED", "CANCELLED", "EXPIRED")


class PaymentAttemptRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_attempt(
        self,
        reference: str,
        order_id: int | None,
        gateway: str,
        amount: Decimal | None = None,
        currency: str | None = None,
        expires_at: datetime | None = None,
    ) -> PaymentAttemptModel:
        attempt = PaymentAttemptModel(
            reference=reference,
            order_id=order_id,
            gateway=gateway,
            amount=amount,
            currency=currency,
            status=PENDING,
            expires_at=expires_at,
        )
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def get_attempt(self, reference: str) -> PaymentAttemptModel | None:
        return self.db.get(PaymentAttemptModel, reference)

    def reference_exists(self, reference: str) -> bool:
        return self.get_attempt(reference) is not None

    def get_terminal_attempt(self, reference: str) -> PaymentAttemptModel | None:
        attempt = self.get_attempt(reference)
        if attempt is not None and attempt.status in TERMINAL_STATUSES:
            return attempt
        return None

    def record_outcome(
        self,
        reference: str,
        status: str,
        message: str | None = None,
        gateway: str | None = None,
    ) -> PaymentAttemptModel:
        """
        Zapisuje wynik terminalny. Pierwszy wynik wygrywa - powtorzony callback
        dostaje zapisany wczesniej wynik zamiast nadpisywac.
        """
        attempt = self.get_attempt(reference)
        if attempt is None:
            #callback do referencji utworzonej poza tym serwisem
            attempt = PaymentAttemptModel(reference=reference, gateway=gateway or "unknown", status=PENDING)
            self.db.add(attempt)

        if attempt.status in TERMINAL_STATUSES:
            return attempt

        attempt.status = status
        attempt.message = message
        attempt.completed_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def expire_pending(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        attempts = (
            self.db.query(PaymentAttemptModel)
            .filter(
                PaymentAttemptModel.status == PENDING,
                PaymentAttemptModel.expires_at.is_not(None),
                PaymentAttemptModel.expires_at < now,
            )
            .all()
        )
        for attempt in attempts:
            attempt.status = "EXPIRED"
            attempt.message = "Payment session expired"
            attempt.completed_at = now
        self.db.commit()
        return len(attempts)
