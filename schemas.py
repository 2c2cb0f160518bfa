"""
Database Schemas for the Trybee store

Each Pydantic model in the first half corresponds to one MongoDB collection.
Collection name is the lowercase of the class name. The second half holds the
request bodies validated at the route boundary.
"""
import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

ROLES = ("customer", "admin")
PRODUCT_CATEGORIES = ("Handicrafts", "Textiles", "Jewelry", "Paintings", "Forest Goods")
PAYMENT_METHODS = ("cash_on_delivery", "credit_card", "upi", "paypal")
ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
SHIPPING_FIELDS = ("full_name", "email", "street", "city", "state", "zip_code", "country")
STRONG_PASSWORD = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")

ProductCategory = Literal["Handicrafts", "Textiles", "Jewelry", "Paintings", "Forest Goods"]


# ----------------------- Collections -----------------------
class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    role: Literal["customer", "admin"] = "customer"
    is_verified: bool = False
    phone: Optional[str] = None
    address: Optional[Address] = None
    wishlist: List[str] = []
    # Both set by forgot-password and cleared together on reset.
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None


class Rating(BaseModel):
    user: str
    rating: int = Field(..., ge=1, le=5)
    date: datetime


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: ProductCategory
    stock: int = Field(0, ge=0)
    images: List[str] = []
    ratings: List[Rating] = []
    # Unset until the first rating arrives.
    average_rating: Optional[float] = None


class Category(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    parent: Optional[str] = None


class OrderItem(BaseModel):
    product: Optional[str] = None
    name: str = "Unknown Product"
    price: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)
    image: str = ""


class ShippingAddress(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def numbers_as_text(cls, v):
        # Clients commonly send zip codes as numbers.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class Order(BaseModel):
    user: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: Literal["cash_on_delivery", "credit_card", "upi", "paypal"]
    payment_result: Optional[PaymentResult] = None
    total_amount: float = Field(..., ge=0)
    tax_amount: float = Field(0, ge=0)
    shipping_amount: float = Field(0, ge=0)
    status: Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"] = "pending"
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


# ----------------------- Request bodies -----------------------
class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class RegisterAdminBody(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=8)
    admin_key: str = Field(..., min_length=1)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        if not STRONG_PASSWORD.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character"
            )
        return v


class LoginBody(BaseModel):
    email: EmailStr
    password: str
    is_admin: bool = False


class ForgotPasswordBody(BaseModel):
    email: EmailStr


class ResetPasswordBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class ChangePasswordBody(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class AdminUserUpdateBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[Literal["customer", "admin"]] = None
    is_verified: Optional[bool] = None
    phone: Optional[str] = None
    address: Optional[Address] = None


class ProductForm(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: ProductCategory
    stock: int = Field(..., ge=0)


class ProductUpdateForm(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[ProductCategory] = None
    stock: Optional[int] = Field(None, ge=0)


class CategoryForm(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    parent: Optional[str] = None


class RateBody(BaseModel):
    rating: int


class OrderCreateBody(BaseModel):
    items: List[OrderItem] = []
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None
    total_amount: Optional[float] = Field(None, ge=0)
    tax_amount: float = Field(0, ge=0)
    shipping_amount: float = Field(0, ge=0)

    @field_validator("payment_method")
    @classmethod
    def normalize_payment_method(cls, v: Optional[str]) -> Optional[str]:
        # Older clients send the hyphenated spelling.
        if v == "credit-card":
            return "credit_card"
        return v


class StatusBody(BaseModel):
    status: str


class PaymentBody(BaseModel):
    payment_result: PaymentResult


class ContactBody(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
