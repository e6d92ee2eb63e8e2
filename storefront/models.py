from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, EmailStr, Field
import uuid

def new_id() -> str:
    return uuid.uuid4().hex

# --- Catalog ---
class ReviewDB(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    price: Decimal
    category: str
    images: List[str] = []
    brand: Optional[str] = None
    stock: int = Field(0, ge=0)
    is_active: bool = True
    reviews: List[ReviewDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class CategoryDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: Optional[str] = None
    slug: str

    class Config:
        populate_by_name = True

class BannerDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image_url: Optional[str] = None # Hosted by the media service
    is_active: bool = True
    display_order: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

# --- Accounts ---
class AddressDB(BaseModel):
    address_id: str = Field(default_factory=new_id)
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: str
    ward: Optional[str] = None
    district: Optional[str] = None
    city: str
    country: Optional[str] = None
    zip_code: Optional[str] = None
    is_default: bool = False

class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    email: EmailStr
    password_hash: str
    full_name: str
    phone: Optional[str] = None
    role: str = "user"
    is_active: bool = True
    addresses: List[AddressDB] = []
    wishlist: List[str] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

# --- Cart ---
class CartItemDB(BaseModel):
    item_id: str = Field(default_factory=new_id)
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.utcnow)

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    version: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

# --- Orders ---
class OrderItemDB(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: Decimal # Price at purchase
    size: Optional[str] = None
    color: Optional[str] = None

class StatusChangeDB(BaseModel):
    field: str # status | payment_status
    from_state: str
    to_state: str
    note: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime = Field(default_factory=datetime.utcnow)

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[OrderItemDB]
    shipping_address: AddressDB
    payment_method: str
    payment_status: str
    status: str = "pending"
    subtotal: Decimal
    shipping_fee: Decimal
    total: Decimal
    note: Optional[str] = None
    payment_reference: Optional[str] = None
    status_history: List[StatusChangeDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

def _mongo_value(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _mongo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_mongo_value(v) for v in value]
    return value

def to_document(model: BaseModel) -> dict:
    """Dump a DB model for insertion: alias ``_id``, drop an unset id, Decimal -> float."""
    doc = model.dict(by_alias=True)
    if doc.get("_id") is None:
        doc.pop("_id", None)
    return _mongo_value(doc)
