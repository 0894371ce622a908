"""
Request Schemas for the Food Delivery Admin API

Each collection is named after the lowercased entity (User -> "user").
Stored documents use camelCase keys because they are returned to the admin
client as-is; request models below validate what the client may write.
"""

from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["admin", "customer"]
ProductStatus = Literal["available", "unavailable", "out-of-stock"]
OrderStatus = Literal["pending", "confirmed", "delivered", "cancelled"]

ROLES = get_args(Role)
ORDER_STATUSES = get_args(OrderStatus)

MOBILE_PATTERN = r"^[0-9]{10,15}$"


class _Stripped(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# ------------ Auth ------------
class RegisterRequest(_Stripped):
    name: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Optional[Role] = None


class LoginRequest(_Stripped):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(_Stripped):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    mobile: Optional[str] = Field(None, pattern=MOBILE_PATTERN)
    password: Optional[str] = Field(None, min_length=6)


class AuthUser(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: Role


# ------------ Users ------------
class UserCreate(_Stripped):
    name: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    mobile: Optional[str] = Field(None, pattern=MOBILE_PATTERN)
    password: str = Field(..., min_length=6)
    role: Role = "customer"


class UserUpdate(_Stripped):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    mobile: Optional[str] = Field(None, pattern=MOBILE_PATTERN)
    role: Optional[Role] = None


# ------------ Categories ------------
class CategoryCreate(_Stripped):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)


class CategoryUpdate(_Stripped):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)


# ------------ Products ------------
class ProductCreate(_Stripped):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str
    image_url: Optional[str] = Field(None, alias="imageUrl")
    stock: int = Field(0, ge=0)
    status: ProductStatus = "available"
    featured: bool = False


class ProductUpdate(_Stripped):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    stock: Optional[int] = Field(None, ge=0)
    status: Optional[ProductStatus] = None
    featured: Optional[bool] = None


# ------------ Orders ------------
class OrderItemIn(BaseModel):
    product: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    # emptiness is checked in orders.place_order
    user: Optional[str] = None
    items: Optional[List[OrderItemIn]] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None
