"""
Database Schemas for the bilingual shop

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name:
- User -> "user", Category -> "category", Product -> "product"
- Advertisement -> "advertisement", DiscountCode -> "discount"
- Cart -> "cart", Order -> "order"

Top-level documents use ObjectId ``_id`` in the database and a string ``id``
here. Nested variation/option/SKU entries carry their own string ids.
"""

from datetime import datetime
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from database import as_utc

Role = Literal["user", "admin"]
AdvertisementType = Literal["slide", "sideOffer", "weeklyOffer", "other"]


def new_id() -> str:
    return str(ObjectId())


class Bilingual(BaseModel):
    en: str = ""
    ar: str = ""


class Document(BaseModel):
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_mongo(cls, doc: Optional[Dict[str, Any]]):
        if doc is None:
            return None
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls(**data)

    def to_mongo(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id", "created_at", "updated_at"})


# ---------------------------------
# Users
# ---------------------------------

class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    # Stored in DB, never returned in public responses
    password_hash: Optional[str] = Field(None, description="Hashed password")
    role: Role = Field("user", description="user | admin")
    is_active: bool = Field(True, description="Whether user is active")
    wishlist: List[str] = Field(default_factory=list, description="Saved product ids")


# ---------------------------------
# Catalog
# ---------------------------------

class Category(Document):
    name: Bilingual
    description: Bilingual = Field(default_factory=Bilingual)
    image: Optional[str] = None


class Sku(BaseModel):
    id: str = Field(default_factory=new_id)
    name: Bilingual = Field(default_factory=Bilingual)
    price: float = Field(..., ge=0, description="Overrides the product base price when selected")
    stock: int = Field(0, ge=0)
    sku_code: Optional[str] = Field(None, description="External SKU code")


class Option(BaseModel):
    id: str = Field(default_factory=new_id)
    name: Bilingual = Field(default_factory=Bilingual)
    image: Optional[str] = None
    skus: List[Sku] = Field(default_factory=list)


class Variation(BaseModel):
    id: str = Field(default_factory=new_id)
    name: Bilingual = Field(default_factory=Bilingual)
    options: List[Option] = Field(default_factory=list)


class Review(BaseModel):
    user_id: str
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    created_at: Optional[datetime] = None


class Product(Document):
    """
    Products collection schema
    Collection name: "product"

    A product without variations is priced and stocked through ``base_price``
    and ``stock``; otherwise every purchasable configuration is a SKU.
    """
    name: Bilingual
    description: Bilingual = Field(default_factory=Bilingual)
    base_price: float = Field(..., ge=0)
    category: Optional[str] = Field(None, description="Category id")
    stock: int = Field(0, ge=0, description="Product-level stock, used when there are no variations")
    main_image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    variations: List[Variation] = Field(default_factory=list)
    reviews: List[Review] = Field(default_factory=list)
    num_reviews: int = 0
    average_rating: float = 0

    @model_validator(mode="after")
    def check_unique_skus(self):
        seen = set()
        for _, _, sku in self.iter_skus():
            if sku.id in seen:
                raise ValueError(f"Duplicate SKU id {sku.id} in product variations")
            seen.add(sku.id)
        return self

    def iter_skus(self) -> Iterator[Tuple[Variation, Option, Sku]]:
        for variation in self.variations:
            for option in variation.options:
                for sku in option.skus:
                    yield variation, option, sku

    def find_sku(self, sku_id: str) -> Optional[Tuple[Variation, Option, Sku]]:
        for found in self.iter_skus():
            if found[2].id == sku_id:
                return found
        return None

    def sku_path(self, sku_id: str) -> Optional[str]:
        """Dotted MongoDB path of a SKU inside the variation tree."""
        for vi, variation in enumerate(self.variations):
            for oi, option in enumerate(variation.options):
                for si, sku in enumerate(option.skus):
                    if sku.id == sku_id:
                        return f"variations.{vi}.options.{oi}.skus.{si}"
        return None


# ---------------------------------
# Promotions and discount codes
# ---------------------------------

class Advertisement(Document):
    title: Bilingual
    description: Bilingual = Field(default_factory=Bilingual)
    image: str = ""
    link: str = "#"
    type: AdvertisementType = "slide"
    product_ref: Optional[str] = Field(None, description="Product id the markdown applies to")
    is_active: bool = True
    order: int = Field(0, ge=0, description="Display order")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    discount_percentage: float = Field(0, ge=0, le=100)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value):
        return as_utc(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("End date must be after start date.")
        return self


class DiscountCode(Document):
    """
    Discounts collection schema
    Collection name: "discount"

    Exactly one of ``percentage`` and ``fixed_amount`` is set.
    """
    code: str = Field(..., min_length=1)
    percentage: Optional[float] = Field(None, ge=0, le=100)
    fixed_amount: Optional[float] = Field(None, ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=0)
    usage_count: int = Field(0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value):
        return as_utc(value)

    @field_validator("code")
    @classmethod
    def strip_code(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Discount code is required")
        return value

    @model_validator(mode="after")
    def check_kind_and_window(self):
        if self.percentage is not None and self.fixed_amount is not None:
            raise ValueError("Set either a percentage or a fixed amount, not both")
        if self.percentage is None and self.fixed_amount is None:
            raise ValueError("Either a percentage or a fixed amount is required")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("End date must be after start date.")
        return self


# ---------------------------------
# Cart and orders
# ---------------------------------

class CartItem(BaseModel):
    product_id: str
    selected_variant: Optional[str] = Field(None, description="SKU id, when the product has variations")
    name: Bilingual = Field(default_factory=Bilingual)
    image: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price snapshotted at the last add/update")
    quantity: int = Field(1, ge=1)
    stock: Optional[int] = Field(None, description="Stock snapshotted with the price")
    variant_details_text: str = ""

    def matches(self, product_id: str, selected_variant: Optional[str]) -> bool:
        return self.product_id == product_id and (self.selected_variant or None) == (selected_variant or None)


class Cart(Document):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    version: int = 0

    def find_item(self, product_id: str, selected_variant: Optional[str]) -> int:
        for index, item in enumerate(self.items):
            if item.matches(product_id, selected_variant):
                return index
        return -1


class OrderItem(CartItem):
    model_config = ConfigDict(frozen=True)


class ShippingAddress(BaseModel):
    address: str
    city: str
    postal_code: str = ""
    country: str = ""
    phone: Optional[str] = None


class PaymentResult(BaseModel):
    id: str
    status: str = "COMPLETED"
    update_time: str
    email_address: Optional[str] = None


class AppliedDiscount(BaseModel):
    code: str
    amount: float = Field(..., ge=0)


class Order(Document):
    """
    Orders collection schema
    Collection name: "order"

    Only the paid/delivered flags change after creation.
    """
    user_id: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: float = Field(..., ge=0)
    discount: Optional[AppliedDiscount] = None
    total_price: float = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
