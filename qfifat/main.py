import os
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from . import config
from .db import init_schema
from .routers import admin, coupons, merchants, notifications, orders, payments, products, reviews

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

Path(config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Schema creation belongs to deploy-time migrations; AUTO_CREATE_SCHEMA=true
    is for local runs.
    """
    if os.getenv("AUTO_CREATE_SCHEMA", "false").lower() == "true":
        init_schema()
        logger.info("schema ensured")
    yield


app = FastAPI(title="qfifat", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded payment proofs and product images
app.mount("/static", StaticFiles(directory=config.UPLOAD_DIR), name="static")

app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(coupons.router)
app.include_router(merchants.router)
app.include_router(products.router)
app.include_router(reviews.router)
app.include_router(notifications.router)
app.include_router(admin.router)


@app.get("/health")
def health():
    return {"ok": True}
