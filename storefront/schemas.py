from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input, password_problems

from storefront.state import OrderStatus, PaymentMethod

# --- Accounts ---
class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None

    @field_validator('password')
    def password_complexity(cls, v):
        problems = password_problems(v)
        if problems:
            raise ValueError('Password must contain ' + ', '.join(problems))
        return v

    @field_validator('full_name', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class AddressBase(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: str = Field(..., min_length=1)
    ward: Optional[str] = None
    district: Optional[str] = None
    city: str = Field(..., min_length=1)
    country: Optional[str] = None
    zip_code: Optional[str] = None
    is_default: bool = False

class AddressCreate(AddressBase):
    @field_validator('full_name', 'phone', 'street', 'ward', 'district', 'city', 'country', 'zip_code')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressResponse(AddressBase):
    address_id: str

class UserResponse(BaseModel):
    id: str
    email: EmailStr
    full_name: str
    phone: Optional[str] = None
    role: str
    is_active: bool = True
    created_at: datetime
    addresses: List[AddressResponse] = []

class ProfileUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None

    @field_validator('full_name', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)

    @field_validator('new_password')
    def password_complexity(cls, v):
        problems = password_problems(v)
        if problems:
            raise ValueError('Password must contain ' + ', '.join(problems))
        return v

class WishlistAdd(BaseModel):
    product_id: str

# --- Catalog ---
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    slug: str = Field(..., min_length=1, pattern="^[a-z0-9-]+$")

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    slug: str

class BannerCreate(BaseModel):
    title: str = Field(..., min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    display_order: int = 0

    @field_validator('title', 'subtitle', 'description', 'button_text')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class BannerUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None

    @field_validator('title', 'subtitle', 'description', 'button_text')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class BannerResponse(BaseModel):
    id: str
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    display_order: int
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., gt=0)
    category: str
    images: List[str] = []
    brand: Optional[str] = None
    stock: int = Field(0, ge=0)

    @field_validator('name', 'description', 'category', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None
    brand: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('name', 'description', 'category', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None

    @field_validator('comment')
    def sanitize_comment(cls, v):
        return sanitize_input(v)

class ReviewResponse(BaseModel):
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str
    price: Decimal
    category: str
    images: List[str]
    brand: Optional[str] = None
    stock: int
    is_active: bool
    rating: Optional[float] = None
    review_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

# --- Cart ---
class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)
    size: Optional[str] = None
    color: Optional[str] = None

    @field_validator('size', 'color')
    def sanitize_variant(cls, v):
        return sanitize_input(v)

class CartItemUpdate(BaseModel):
    item_id: str
    # Range is checked by the cart service so the error maps to ValidationError
    quantity: int

class CartItemResponse(BaseModel):
    item_id: str
    product_id: str
    name: str
    price: Decimal
    image: Optional[str] = None
    stock: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    line_total: Decimal

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total: Decimal
    count: int
    version: int
    updated_at: datetime

class AddToCartResult(BaseModel):
    cart: CartResponse
    requested_quantity: int
    adjusted_quantity: int
    warning: Optional[str] = None

class StockShortfall(BaseModel):
    product_id: str
    name: Optional[str] = None
    available_stock: int
    requested_quantity: int
    message: str

class CartValidationResponse(BaseModel):
    valid: bool
    shortfalls: List[StockShortfall]

class CheckoutSummary(BaseModel):
    cart: CartResponse
    addresses: List[AddressResponse]
    subtotal: Decimal
    shipping_fee: Decimal
    total: Decimal
    payment_methods: List[PaymentMethod]

# --- Orders ---
class OrderCreate(BaseModel):
    address_id: Optional[str] = None
    shipping_address: Optional[AddressCreate] = None
    payment_method: PaymentMethod
    note: Optional[str] = None

    @field_validator('note')
    def sanitize_note(cls, v):
        return sanitize_input(v)

    @model_validator(mode='after')
    def one_address_source(self):
        if self.address_id and self.shipping_address:
            raise ValueError('Give either address_id or shipping_address, not both')
        return self

class PaymentConfirmation(BaseModel):
    transaction_id: Optional[str] = None

    @field_validator('transaction_id')
    def sanitize_transaction(cls, v):
        return sanitize_input(v)

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None

    @field_validator('note')
    def sanitize_note(cls, v):
        return sanitize_input(v)

class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: Decimal
    size: Optional[str] = None
    color: Optional[str] = None

class StatusChangeResponse(BaseModel):
    field: str
    from_state: str
    to_state: str
    note: Optional[str] = None
    changed_at: datetime

class OrderResponse(BaseModel):
    id: str
    user_id: str
    items: List[OrderItemResponse]
    shipping_address: AddressResponse
    payment_method: str
    payment_status: str
    status: str
    subtotal: Decimal
    shipping_fee: Decimal
    total: Decimal
    note: Optional[str] = None
    payment_reference: Optional[str] = None
    status_history: List[StatusChangeResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

# --- Reports ---
class DashboardCounts(BaseModel):
    products: int
    categories: int
    banners: int
    users: int
    orders: int
    pending_orders: int

class Dashboard(BaseModel):
    counts: DashboardCounts
    recent_products: List[ProductResponse]

class DailyRevenue(BaseModel):
    date: str
    revenue: Decimal
    order_count: int

class TopProduct(BaseModel):
    product_id: str
    name: Optional[str] = None
    revenue: Decimal
    quantity: int

class RevenueReport(BaseModel):
    range: str
    start: datetime
    end: datetime
    total_revenue: Decimal
    order_count: int
    daily: List[DailyRevenue]
    top_products: List[TopProduct]
