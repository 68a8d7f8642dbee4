# app/tasks/expire.py
from datetime import datetime, timezone

from app.celery_worker import celery_app
from app.data.database import SessionLocal
from app.repos.payment_attempt_repo import PaymentAttemptRepo
from app.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="app.tasks.expire.expire_payment_attempts_task")
def expire_payment_attempts_task():
    """Zamyka proby platnosci ktore czekaja dluzej niz sesja platnosci (PENDING -> EXPIRED)."""
    logger.info("Expire payment attempts task started")

    db = SessionLocal()
    try:
        now = datetime.now(timezone.utc)
        expired = PaymentAttemptRepo(db).expire_pending(now)
        logger.info(f"Expired {expired} pending payment attempts")
        return expired
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
