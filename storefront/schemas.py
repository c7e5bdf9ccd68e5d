from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Money travels as a JSON number, not pydantic's default decimal string
Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# --- Orders -------------------------------------------------------------------

class ShippingAddress(CamelModel):
    line1: Optional[str] = None
    line2: Optional[str] = ""
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None

class CartLineIn(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)
    product_id: Optional[str] = None
    quantity: Optional[int] = None
    variant_id: Optional[str] = None
    weight: Optional[str] = None
    # any client-side price is dropped on the floor; orders are priced from the catalog

class OrderCreate(CamelModel):
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    cart_items: Optional[List[CartLineIn]] = None
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None

class OrderCreated(CamelModel):
    order_id: int
    order_number: str
    total_amount: Money
    payment_method: str
    order_status: str
    delivery_estimate: Optional[str] = None

class OrderItemRead(CamelModel):
    product_id: str
    variant_id: Optional[str] = None
    weight: Optional[str] = None
    quantity: int
    name: str
    price: Money
    image: Optional[str] = None

class ShippingAddressRead(CamelModel):
    line1: str
    line2: Optional[str] = ""
    city: str
    state: str
    pincode: str
    country: str

class OrderRead(CamelModel):
    order_id: int
    order_number: str
    user_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: ShippingAddressRead
    items: List[OrderItemRead] = []
    coupon_code: Optional[str] = None
    payment_method: str
    order_status: str
    tracking_number: Optional[str] = None
    delivery_estimate: Optional[str] = None
    subtotal: Money
    shipping: Money
    tax: Money
    discount: Money
    total_amount: Money
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order) -> "OrderRead":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            shipping_address=ShippingAddressRead(
                line1=order.address_line1,
                line2=order.address_line2 or "",
                city=order.city,
                state=order.state,
                pincode=order.pincode,
                country=order.country,
            ),
            items=[
                OrderItemRead(
                    product_id=it.product_id,
                    variant_id=it.variant_id,
                    weight=it.weight,
                    quantity=it.quantity,
                    name=it.name_snapshot,
                    price=it.price_snapshot,
                    image=it.image_snapshot,
                )
                for it in order.items
            ],
            coupon_code=order.coupon_code,
            payment_method=order.payment_method,
            order_status=order.order_status,
            tracking_number=order.tracking_number,
            delivery_estimate=order.delivery_estimate,
            subtotal=order.subtotal,
            shipping=order.shipping,
            tax=order.tax,
            discount=order.discount,
            total_amount=order.total_amount,
            cancellation_reason=order.cancellation_reason,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

class OrderStatusUpdate(CamelModel):
    order_status: Optional[str] = None
    tracking_number: Optional[str] = None
    delivery_estimate: Optional[str] = None

class OrderCancel(CamelModel):
    reason: Optional[str] = None

# --- Coupons ------------------------------------------------------------------

class CouponValidate(CamelModel):
    code: Optional[str] = None
    cart_total: Optional[Decimal] = None

class CouponValidation(CamelModel):
    code: str
    description: str = ""
    discount_type: str
    discount_value: Money
    discount: Money
    cart_total: Money
    new_total: Money

class CouponCreate(CamelModel):
    code: str
    description: Optional[str] = ""
    discount_type: str
    discount_value: Decimal = Field(ge=0)
    min_order_amount: Optional[Decimal] = Field(default=Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=0)
    per_user_limit: Optional[int] = Field(default=1, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    is_active: bool = True

class CouponUpdate(CamelModel):
    # no code or usage counters: those never change through an update
    description: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=0)
    per_user_limit: Optional[int] = Field(default=None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None

class CouponUsageRead(CamelModel):
    user_id: str
    used_count: int

class CouponRead(CamelModel):
    id: int
    code: str
    description: str = ""
    discount_type: str
    discount_value: Money
    min_order_amount: Money
    max_discount: Optional[Money] = None
    usage_limit: Optional[int] = None
    per_user_limit: Optional[int] = None
    used_count: int
    redemptions: List[CouponUsageRead] = Field(
        default_factory=list,
        validation_alias=AliasChoices("redemptions", "usedByUsers"),
        serialization_alias="usedByUsers",
    )
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    created_at: datetime
    updated_at: datetime

# --- Cart ---------------------------------------------------------------------

class CartItemAdd(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)
    product_id: str
    quantity: int = Field(default=1, ge=1)

class CartItemUpdate(CamelModel):
    quantity: int = Field(ge=1)

class CartItemRead(CamelModel):
    product_id: str
    name: str
    price: Money
    image: Optional[str] = None
    quantity: int

class CartRead(CamelModel):
    items: List[CartItemRead] = []
    item_count: int = 0
    subtotal: Money
    shipping: Money
    tax: Money
    total: Money
    amount_for_free_shipping: Money
    free_shipping_threshold: Money
    message: Optional[str] = None
