import os
from decimal import Decimal

# Flat fee added to every order (DZD)
SHIPPING_COST = Decimal(os.getenv("SHIPPING_COST", "500"))

# Platform share of each merchant line item, as a fraction
COMMISSION_RATE = Decimal(os.getenv("COMMISSION_RATE", "0.10"))
if not (Decimal("0") <= COMMISSION_RATE <= Decimal("1")):
    raise RuntimeError("COMMISSION_RATE must be between 0 and 1")

MIN_WITHDRAWAL = Decimal(os.getenv("MIN_WITHDRAWAL", "1000"))

ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "QF")
INVOICE_NUMBER_PREFIX = os.getenv("INVOICE_NUMBER_PREFIX", "INV")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
