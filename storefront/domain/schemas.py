# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, List

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class ClientModel(BaseModel):
    """Request body accepting both snake_case and the camelCase the storefront JS sends."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_identifier(value):
    if value is None:
        return None
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        value = str(value).strip()
        return value or None
    return value


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class CartLineIn(ClientModel):
    """Line as held by the client, e.g. in localStorage."""

    product_id: str = Field(..., min_length=1, max_length=255)
    variant_id: str | None = Field(default=None, max_length=255)
    title: str | None = None
    variant_label: str | None = Field(
        default=None,
        validation_alias=AliasChoices("variant_label", "variantLabel", "variant"),
    )
    image: str | None = None
    price: Decimal = Field(default=Decimal("0.00"), ge=0)
    quantity: int = 1
    added_at: datetime | None = None

    @field_validator("product_id", "variant_id", mode="before")
    @classmethod
    def _normalize_identifiers(cls, value):
        return _as_identifier(value)


class AddItemIn(CartLineIn):
    """Schema for adding a product to the cart."""

    title: str = Field(..., min_length=1, max_length=500)
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(default=1, gt=0)


class UpdateQuantityIn(ClientModel):
    variant_id: str | None = None
    quantity: int

    @field_validator("variant_id", mode="before")
    @classmethod
    def _normalize_variant(cls, value):
        return _as_identifier(value)


class SyncCartIn(ClientModel):
    items: List[CartLineIn] = Field(default_factory=list)


class MergeCartIn(ClientModel):
    customer_email: EmailStr


class CartLineOut(BaseModel):
    product_id: str
    variant_id: str | None = None
    title: str | None = None
    variant_label: str | None = None
    image: str | None = None
    price: Decimal
    quantity: int
    added_at: datetime | None = None


class CartOut(BaseModel):
    """Schema for the cart (response)."""

    session_id: str
    customer_email: str | None = None
    items: List[CartLineOut]
    item_count: int
    subtotal: Decimal
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderItemIn(ClientModel):
    # loosely typed: the order service reports every problem at once
    product_id: Any = None
    variant_id: Any = None
    title: str | None = None
    variant_label: str | None = Field(
        default=None,
        validation_alias=AliasChoices("variant_label", "variantLabel", "variant"),
    )
    image: str | None = None
    price: Decimal | None = None
    quantity: Any = None


class AddressIn(ClientModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    country: str | None = None
    region: str | None = Field(
        default=None, validation_alias=AliasChoices("region", "state")
    )
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    postal_code: str | None = Field(
        default=None, validation_alias=AliasChoices("postal_code", "postalCode", "zip")
    )


class CustomerIn(ClientModel):
    email: str | None = None
    name: str | None = None
    phone: str | None = None


class AmountsIn(ClientModel):
    subtotal: Decimal | None = None
    shipping_cost: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None


class OrderSubmitIn(ClientModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    shipping: AddressIn | None = None
    customer: CustomerIn | None = None
    billing: AddressIn | None = None
    payment_confirmed: bool = False
    payment_intent_id: str | None = None
    amounts: AmountsIn | None = None
    notes: str | None = None


class OrderSubmitOut(BaseModel):
    order_id: str
    external_order_id: str
    external_reference: str
    status: str
    payment_status: str


class OrderOut(BaseModel):
    """Schema for a locally stored order (response)."""

    id: str
    external_order_id: str | None = None
    external_reference: str | None = None
    customer_email: str
    customer_name: str
    shipping_address: dict
    billing_address: dict | None = None
    items: List[dict]
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    status: str
    payment_status: str
    payment_intent_id: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderLookupOut(BaseModel):
    source: str  # local | remote
    order: OrderOut | dict


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderPageOut(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination


class ShippingQuoteIn(ClientModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    address: AddressIn | None = None


# ---------------------------------------------------------------------------
# Blog
# ---------------------------------------------------------------------------
class BlogPostIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    excerpt: str | None = Field(default=None, max_length=500)
    featured_image: str | None = Field(default=None, max_length=500)
    category: str | None = Field(default=None, max_length=100)
    tags: List[str] = Field(default_factory=list)
    meta_title: str | None = Field(default=None, max_length=500)
    meta_description: str | None = Field(default=None, max_length=500)
    author: str | None = Field(default=None, max_length=255)

    @field_validator("title", "content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class BlogPostUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    content: str | None = Field(default=None, min_length=1)
    excerpt: str | None = Field(default=None, max_length=500)
    featured_image: str | None = Field(default=None, max_length=500)
    category: str | None = Field(default=None, max_length=100)
    tags: List[str] | None = None
    meta_title: str | None = Field(default=None, max_length=500)
    meta_description: str | None = Field(default=None, max_length=500)
    author: str | None = Field(default=None, max_length=255)
    is_published: bool | None = None


class BlogPostOut(BaseModel):
    id: str
    slug: str
    title: str
    content: str
    excerpt: str | None = None
    featured_image: str | None = None
    category: str
    tags: List[str] = Field(default_factory=list)
    meta_title: str | None = None
    meta_description: str | None = None
    author: str | None = None
    published_at: datetime
    updated_at: datetime
    is_published: bool

    model_config = ConfigDict(from_attributes=True)


class BlogPageOut(BaseModel):
    posts: List[BlogPostOut]
    pagination: Pagination
