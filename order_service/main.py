import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .database import init_db
from .routers import order_router
from .payment_consumer import start_payment_consumer

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title="Order Service",
    description="Order placement with atomic stock reservation",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create database tables
init_db()

# Include routers
app.include_router(order_router.router)


@app.on_event("startup")
def _startup() -> None:
    if config.CONSUME_PAYMENT_EVENTS:
        # Start background consumer for payment.succeeded / payment.failed
        start_payment_consumer()


@app.get("/")
def root():

    return {
        "service": "Order Service",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():

    return {
        "status": "healthy",
        "service": "order-service"
    }
