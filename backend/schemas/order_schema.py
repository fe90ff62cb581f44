from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Literal, Dict, Any
from datetime import datetime
from decimal import Decimal


class ProductCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    slug: Optional[str] = None
    description: str = ""
    price: Decimal = Field(gt=0)
    stock: int = Field(default=0, ge=0)
    track_stock: bool = True
    images: List[str] = []
    is_active: bool = True


class Product(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = ""
    price: Decimal
    stock: int
    track_stock: bool
    images: List[str] = []
    is_active: bool

    class Config:
        from_attributes = True


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1, le=100)


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1)
    coupon_code: Optional[str] = None
    payment_method: str = "pix"
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None

    @field_validator("coupon_code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v and v.strip() else None


class OrderItem(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: int
    order_number: str
    user_id: int
    subtotal: Decimal
    shipping_cost: Decimal
    discount: Decimal
    total: Decimal
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItem] = []

    class Config:
        from_attributes = True


class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=50)
    name: str = Field(min_length=2, max_length=255)
    description: Optional[str] = None
    type: Literal["PERCENTAGE", "FIXED"]
    value: Decimal = Field(gt=0)
    minimum_amount: Optional[Decimal] = Field(default=None, ge=0)
    maximum_discount: Optional[Decimal] = Field(default=None, gt=0)
    usage_limit_per_user: int = Field(default=1, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


class Coupon(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    type: str
    value: Decimal
    minimum_amount: Optional[Decimal] = None
    maximum_discount: Optional[Decimal] = None
    usage_limit_per_user: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


class CouponAssign(BaseModel):
    user_ids: List[int] = Field(min_length=1)


class CouponValidate(BaseModel):
    code: str
    cart_total: Decimal = Field(ge=0)

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()
