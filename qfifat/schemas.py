from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PaymentMethod = Literal["barid", "stripe"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


# --- checkout / orders ---

class CartItemIn(BaseModel):
    product_id: int
    quantity: int = 1


class ShippingIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=3, max_length=40)
    address: str = Field(min_length=1)
    city: str = ""
    wilaya: str = Field(min_length=1, max_length=100)


class ProofIn(BaseModel):
    file_url: str = Field(min_length=1, max_length=500)
    file_name: str = Field(min_length=1, max_length=255)


class CheckoutIn(BaseModel):
    items: List[CartItemIn]
    shipping: ShippingIn
    payment_method: PaymentMethod = "barid"
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    proof: Optional[ProofIn] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=100)


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float

    model_config = ConfigDict(from_attributes=True)


class PaymentProofOut(BaseModel):
    id: int
    file_url: str
    file_name: str
    uploaded_by: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentOut(BaseModel):
    id: int
    order_id: int
    method: str
    amount: float
    status: str
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    proofs: List[PaymentProofOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    order_number: str
    customer_id: str
    status: str
    subtotal: float
    discount: float
    coupon_code: Optional[str] = None
    shipping_cost: float
    total: float
    shipping_name: str
    shipping_phone: str
    shipping_address: str
    shipping_city: str
    shipping_wilaya: str
    notes: Optional[str] = None
    current_location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
    payment: Optional[PaymentOut] = None

    model_config = ConfigDict(from_attributes=True)


class OrderStatusIn(BaseModel):
    status: OrderStatus


# --- tracking ---

class TrackingIn(BaseModel):
    status: Literal["pending", "confirmed", "processing", "shipped", "delivered"]
    location: str = Field(min_length=1, max_length=200)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    description: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    estimated_delivery: Optional[str] = Field(default=None, max_length=40)


class TrackingOut(BaseModel):
    id: int
    order_id: int
    status: str
    location: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- payments ---

class PaymentRejectIn(BaseModel):
    reason: str = Field(min_length=1)


class PaymentRefundIn(BaseModel):
    notes: Optional[str] = None


# --- coupons ---

class CouponValidateIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    subtotal: Decimal = Field(ge=0)


class CouponQuoteOut(BaseModel):
    code: str
    discount_type: str
    discount_value: float
    discount_amount: float


class CouponCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: Decimal = Field(gt=0)
    min_order_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_uses: Optional[int] = Field(default=None, gt=0)
    is_active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("Code is required")
        return v


class CouponUpdate(BaseModel):
    description: Optional[str] = None
    discount_value: Optional[Decimal] = Field(default=None, gt=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_uses: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class CouponOut(BaseModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    min_order_amount: float
    max_uses: Optional[int] = None
    used_count: int
    is_active: bool
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- merchants / earnings ---

class EarningOut(BaseModel):
    id: int
    order_id: int
    order_item_id: int
    amount: float
    commission_rate: float
    commission_amount: float
    net_amount: float
    settled_amount: float
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EarningsSummaryOut(BaseModel):
    total_earnings: float
    pending_earnings: float
    paid_earnings: float
    total_commission: float
    pending_withdrawals: float
    available_balance: float
    minimum_withdrawal: float


class WithdrawalIn(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: str = Field(default="ccp", min_length=1, max_length=40)
    payment_details: Dict[str, Any] = {}


class WithdrawalActionIn(BaseModel):
    action: Literal["approve", "complete", "reject"]
    notes: Optional[str] = None


class WithdrawalAllocationOut(BaseModel):
    earning_id: int
    amount: float

    model_config = ConfigDict(from_attributes=True)


class WithdrawalOut(BaseModel):
    id: int
    merchant_id: str
    amount: float
    payment_method: str
    payment_details: Dict[str, Any] = {}
    status: str
    admin_notes: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    allocations: List[WithdrawalAllocationOut] = []

    model_config = ConfigDict(from_attributes=True)


class MerchantRequestIn(BaseModel):
    business_name: str = Field(min_length=1, max_length=200)
    business_description: Optional[str] = None
    phone: str = Field(min_length=3, max_length=40)
    wilaya: str = Field(min_length=1, max_length=100)


class MerchantReviewIn(BaseModel):
    approve: bool
    notes: Optional[str] = None


class MerchantRequestOut(BaseModel):
    id: int
    user_id: str
    business_name: str
    business_description: Optional[str] = None
    phone: str
    wilaya: str
    status: str
    admin_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- invoices / notifications / users ---

class InvoiceOut(BaseModel):
    id: int
    invoice_number: str
    order_id: int
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    subtotal: float
    discount: float
    shipping_cost: float
    total: float
    status: str
    issued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationOut(BaseModel):
    id: int
    title: str
    message: str
    type: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RoleIn(BaseModel):
    role: Literal["admin", "merchant", "customer"]


class RoleOut(BaseModel):
    user_id: str
    role: str

    model_config = ConfigDict(from_attributes=True)


# --- products ---

class ProductOut(BaseModel):
    id: int
    merchant_id: Optional[str] = None
    name: str
    description: str
    price: float
    image_url: Optional[str] = None
    stock_quantity: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(gt=0)
    image_url: Optional[str] = None
    stock_quantity: int = Field(default=0, ge=0)
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0)
    image_url: Optional[str] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class UploadOut(BaseModel):
    file_url: str
    file_name: str


# --- reviews ---

class ReviewIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewOut(BaseModel):
    id: int
    product_id: int
    user_id: str
    rating: int
    comment: Optional[str] = None
    is_approved: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProductReviewsOut(BaseModel):
    average_rating: float
    count: int
    reviews: List[ReviewOut] = []


class ReviewModerateIn(BaseModel):
    approved: bool


# --- admin dashboard ---

class DailyRevenueOut(BaseModel):
    day: date
    revenue: float


class StatsOut(BaseModel):
    total_orders: int
    orders_by_status: Dict[str, int]
    total_revenue: float
    revenue_last_7_days: List[DailyRevenueOut]
    last_7_days_total: float
    previous_7_days_total: float
    customers: int
    merchants: int
    products: int
    active_products: int
    pending_payments: int
    pending_withdrawals: int
    pending_merchant_requests: int
    pending_reviews: int
