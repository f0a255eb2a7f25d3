"""
Database Schemas for Jusfabel

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Foreign keys are stored as string ids.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TransactionStatus(str, Enum):
    AWAITING_PAYMENT = "menunggu pembayaran"
    WAITING = "waiting"
    ACCEPT = "accept"
    REJECT = "reject"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.ACCEPT, TransactionStatus.REJECT)


SizeUnit = Literal["inch", "cm", "meter"]


class User(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None


class Admin(User):
    pass


class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = Field(None, description="Path relative to MEDIA_ROOT")
    is_active: bool = True


class ProductSize(BaseModel):
    size_id: str
    additional_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    is_active: bool = True


class Product(BaseModel):
    category_id: str
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    stock: int = Field(0, ge=0)
    is_active: bool = True
    sizes: List[ProductSize] = []
    average_rating: float = 0
    total_ratings: int = 0
    total_reviews: int = 0


class Size(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    unit: SizeUnit


class Rating(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class TransactionItem(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=1)
    price_per_unit: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)


class Transaction(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    customer_address: str
    notes: str = ""
    total_items: int
    total_quantity: int
    total_price: float
    payment_proof: Optional[str] = None
    status: TransactionStatus = TransactionStatus.AWAITING_PAYMENT
    items: List[TransactionItem]
