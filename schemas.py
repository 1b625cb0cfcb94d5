"""
Database Schemas for the storefront

Each Pydantic model below the request section represents a collection in
MongoDB; the collection name is the lowercase of the class name. Fields are
snake_case in Python and camelCase on the wire and in storage.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import (AnyHttpUrl, BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError,
                      field_validator, model_validator)
from pydantic.alias_generators import to_camel

PromotionType = Literal["new stock", "discount promo", "buyOneGetOne"]
ProductPromotion = Literal["new stock", "discount promo", "buyOneGetOne", "none"]
HTTP_URL = TypeAdapter(AnyHttpUrl)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, **kwargs)


# Collections

class Address(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class User(CamelModel):
    firstname: str = Field(..., description="First name")
    lastname: str = Field(..., description="Last name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password: str = Field(..., description="BCrypt hashed password")
    role: Literal["user", "admin"] = Field("user", description="Role: user | admin")
    phone: str = Field(..., description="Nigerian phone number")
    address: Address = Field(default_factory=Address)


class Category(CamelModel):
    name: str = Field(..., description="Unique category name")
    image: str = Field(..., description="Image URL")
    author: str = Field(..., description="Creating admin's user id")


class Product(CamelModel):
    name: str = Field(..., description="Unique, trimmed, lowercased")
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: str = Field(..., description="Category id")
    quantity: int = Field(..., ge=0, description="Units in stock")
    thumbnail: str = Field(..., description="Cover image URL")
    images: List[str] = Field(default_factory=list)
    total_rating: float = 0
    num_reviews: int = 0
    currency: str = "NGN"
    promotion: ProductPromotion = "none"
    promo_id: Optional[str] = None
    promo_title: Optional[str] = None
    in_promotion: bool = False


class OrderItem(CamelModel):
    product: str = Field(..., description="Product id")
    description: str = Field(..., description="Snapshot of the product at order time")
    thumbnail: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at order time")


class Order(CamelModel):
    client_name: str
    client_id: Optional[str] = None
    products: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    reference: str
    status: Literal["pending", "paid"] = "pending"
    paid_at: Optional[datetime] = None
    currency: str = "NGN"
    receipt_pdf: Optional[str] = None
    receipt_image: Optional[str] = None


class ReviewResponse(CamelModel):
    comment: str
    responder: str
    responder_id: str
    created_at: datetime


class Review(CamelModel):
    product: str
    user: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    reference: str = Field(..., description="Reference of the order the product came from")
    response: Optional[ReviewResponse] = None


class PromoProduct(CamelModel):
    product: str
    quantity: int = Field(..., ge=1, description="Units reserved for the promotion")
    main_price: float = Field(..., ge=0)
    promo_price: float = Field(..., ge=0)

    @model_validator(mode="after")
    def promo_not_above_main(self):
        if self.promo_price > self.main_price:
            raise ValueError("promoPrice cannot be greater than mainPrice")
        return self


class Promotion(CamelModel):
    title: str
    type: PromotionType
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    buy_one_get_one: bool = False
    products: List[PromoProduct]
    active: bool = True
    promo_banner: Optional[str] = None
    template: Optional[str] = None


# Requests

class RegisterInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    firstname: str = ""
    lastname: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = Field("", alias="confirmPassword")
    phone: str = ""


class LoginInput(BaseModel):
    email: str
    password: str


class AccountUpdate(CamelModel):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None


class ForgotPasswordInput(BaseModel):
    email: str


class ResetPasswordInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: str
    confirm_password: str = Field(..., alias="confirmPassword")


class OrderItemInput(CamelModel):
    product: str
    description: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    thumbnail: str
    currency: Optional[str] = None

    @field_validator("thumbnail")
    @classmethod
    def thumbnail_is_url(cls, value: str) -> str:
        # checked as a URL but stored exactly as sent
        try:
            HTTP_URL.validate_python(value)
        except ValidationError:
            raise ValueError("thumbnail must be an http(s) URL")
        return value


class OrderInput(CamelModel):
    client_name: str = Field(..., min_length=1)
    products: List[OrderItemInput] = Field(..., min_length=1)
    total_amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    client_id: Optional[str] = None


class ReviewInput(BaseModel):
    product: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None
    response: Optional[str] = Field(None, description="Admin reply to the review")


class PromoProductInput(CamelModel):
    product: str
    quantity: int = Field(..., ge=1)
    main_price: float = Field(..., ge=0)
    promo_price: float = Field(..., ge=0)


class PromotionInput(CamelModel):
    title: str = Field(..., min_length=1)
    type: str
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    products: List[PromoProductInput] = Field(..., min_length=1)
    template: str = Field(..., min_length=1, description="Banner HTML")

    @field_validator("template", mode="before")
    @classmethod
    def template_is_string(cls, value):
        if not isinstance(value, str):
            raise ValueError("Template must be a string")
        return value


class PromotionUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
