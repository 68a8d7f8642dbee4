from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from app.data.database import Base


class PaymentAttemptModel(Base):
    """Rejestr prob platnosci - jedna referencja = jedna proba, wynik terminalny zapisany raz."""

    __tablename__ = "payment_attempts"

    reference = Column(String(64), primary_key=True)
    order_id = Column(Integer, nullable=True, index=True)
    gateway = Column(String(32), nullable=False)
    amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    status = Column(String(16), nullable=False, default="PENDING")  # PENDING, SUCCESS, FAILED, CANCELLED, EXPIRED
    message = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
