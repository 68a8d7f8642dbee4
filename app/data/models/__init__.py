#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from app.data.models.payment_attempt import PaymentAttemptModel

__all__ = ["PaymentAttemptModel"]
