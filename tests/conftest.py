import os
import tempfile
from decimal import Decimal
from pathlib import Path

_tmp = Path(tempfile.mkdtemp(prefix="qfifat-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp / 'test.db'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["EVENT_BACKEND"] = "none"
os.environ["UPLOAD_DIR"] = str(_tmp / "uploads")
os.environ.pop("JWT_AUDIENCE", None)
os.environ.pop("JWT_ISSUER", None)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from qfifat.db import Base, SessionLocal, engine
from qfifat.main import app
from qfifat.models import Coupon, Product, UserRole
from qfifat.schemas import CheckoutIn
from qfifat.security import ALGO, JWT_SECRET, CurrentUser


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    return TestClient(app)


def _with_role(db, user: CurrentUser) -> CurrentUser:
    if user.role != "customer":
        db.add(UserRole(user_id=user.id, role=user.role))
        db.commit()
    return user


@pytest.fixture
def admin(db):
    return _with_role(db, CurrentUser(id="admin-1", email="admin@qfifat.dz", role="admin"))


@pytest.fixture
def merchant(db):
    return _with_role(db, CurrentUser(id="merchant-1", email="atelier@qfifat.dz", role="merchant"))


@pytest.fixture
def customer(db):
    return CurrentUser(id="customer-1", email="amina@example.dz", role="customer")


def token_for(user: CurrentUser) -> str:
    return jwt.encode({"sub": user.id, "email": user.email}, JWT_SECRET, algorithm=ALGO)


def auth(user: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


def make_product(db, price="2500", merchant_id=None, name="سلة قفيفة", active=True) -> Product:
    p = Product(
        merchant_id=merchant_id,
        name=name,
        description="",
        price=Decimal(price),
        image_url="/static/basket.jpg",
        stock_quantity=10,
        is_active=active,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def make_coupon(db, code="SAVE20", discount_type="percentage", value="20", min_order="1000", **kw) -> Coupon:
    c = Coupon(
        code=code,
        discount_type=discount_type,
        discount_value=Decimal(value),
        min_order_amount=Decimal(min_order),
        used_count=kw.pop("used_count", 0),
        is_active=kw.pop("is_active", True),
        **kw,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def checkout_payload(lines, method="barid", coupon_code=None, key=None, proof=True) -> CheckoutIn:
    data = {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
        "shipping": {
            "name": "أمينة بن علي",
            "phone": "0555123456",
            "address": "حي 20 أوت، عمارة 3",
            "city": "باب الزوار",
            "wilaya": "الجزائر",
        },
        "payment_method": method,
        "coupon_code": coupon_code,
        "idempotency_key": key,
    }
    if proof and method == "barid":
        data["proof"] = {"file_url": "/static/proof_abc.jpg", "file_name": "recu.jpg"}
    return CheckoutIn(**data)
