# app/main.py
from fastapi import FastAPI
from app.data.database import Base, engine
from app.api.routers import checkout, guest_carts, health, payments
from app.utils.logging import get_logger
import uvicorn

logger = get_logger(__name__)

# IMPORT WSZYSTKICH MODELI NA POCZĄTKU (PRZED JAKIMKOLWIEK CREATE_ALL)
from app.data.models.payment_attempt import PaymentAttemptModel

logger.info("Initializing database...")
logger.info(f"Models registered in Base.metadata: {list(Base.metadata.tables.keys())}")

try:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
except Exception as e:
    logger.error(f"Failed to create tables: {e}")
    raise


def create_app() -> FastAPI:
    app = FastAPI(
        title="Checkout Service",
        version="1.0.0",
    )

    # Include routers
    app.include_router(health.router)
    # payments przed checkout - /checkout/callback vs /checkout/{session_id}
    app.include_router(payments.router)
    app.include_router(checkout.router)
    app.include_router(guest_carts.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
