from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

OrderStatus = Literal["active", "completed", "cancelled"]
ResponseStatus = Literal["pending", "accepted", "rejected"]

Money = Optional[Decimal]


def validate_budget_range(budget_min: Money, budget_max: Money) -> None:
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise ValueError("budgetMin cannot exceed budgetMax")


class CamelModel(BaseModel):
    """Base for every API model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PartialUpdate(CamelModel):
    """Patch payload: omitted fields are left alone, ``NOT_NULL`` ones may not be nulled."""

    NOT_NULL: ClassVar[tuple] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulled = [name for name in self.NOT_NULL if name in self.model_fields_set and getattr(self, name) is None]
        if nulled:
            raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")
        return self


# --- Users / tariffs ---
class User(CamelModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserUpsert(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class Tariff(CamelModel):
    id: int
    name: str
    price: int
    features: List[str] = Field(default_factory=list)
    is_active: bool
    created_at: Optional[datetime] = None


class Payment(CamelModel):
    id: int
    company_id: int
    tariff_id: int
    amount: int
    status: Literal["pending", "completed", "failed"]
    payment_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None


# --- Companies ---
class CompanyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    tags: List[str] = Field(default_factory=list)
    tariff_id: Optional[int] = None
    is_active: bool = True


class CompanyUpdate(PartialUpdate):
    NOT_NULL: ClassVar[tuple] = ("name", "tags", "is_active")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None
    tariff_id: Optional[int] = None
    is_active: Optional[bool] = None


class Company(CamelModel):
    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    region: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    tariff_id: Optional[int] = None
    rating: Decimal
    review_count: int
    is_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CompanyWithTariff(Company):
    tariff: Optional[Tariff] = None


# --- Orders ---
class OrderCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    budget: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    budget_min: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    budget_max: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    deadline: Optional[date] = None
    region: Optional[str] = Field(None, max_length=100)
    requirements: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    status: OrderStatus = "active"
    is_urgent: bool = False

    @model_validator(mode="after")
    def check_budget_range(self):
        validate_budget_range(self.budget_min, self.budget_max)
        return self


class OrderUpdate(PartialUpdate):
    NOT_NULL: ClassVar[tuple] = ("title", "attachments", "status", "is_urgent")

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    budget: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    budget_min: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    budget_max: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    deadline: Optional[date] = None
    region: Optional[str] = Field(None, max_length=100)
    requirements: Optional[str] = None
    attachments: Optional[List[str]] = None
    status: Optional[OrderStatus] = None
    is_urgent: Optional[bool] = None

    @model_validator(mode="after")
    def check_budget_range(self):
        validate_budget_range(self.budget_min, self.budget_max)
        return self


class Order(CamelModel):
    id: int
    customer_id: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    budget: Money = None
    budget_min: Money = None
    budget_max: Money = None
    deadline: Optional[date] = None
    region: Optional[str] = None
    requirements: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    status: OrderStatus
    response_count: int
    is_urgent: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderWithCustomer(Order):
    customer: User


# --- Order responses ---
class OrderResponseCreate(CamelModel):
    message: Optional[str] = None
    proposed_price: Money = Field(None, ge=0, max_digits=12, decimal_places=2)
    proposed_deadline: Optional[date] = None
    attachments: List[str] = Field(default_factory=list)


class OrderResponseStatusUpdate(CamelModel):
    status: ResponseStatus


class OrderResponse(CamelModel):
    id: int
    order_id: int
    company_id: int
    message: Optional[str] = None
    proposed_price: Money = None
    proposed_deadline: Optional[date] = None
    attachments: List[str] = Field(default_factory=list)
    status: ResponseStatus
    created_at: Optional[datetime] = None


class OrderResponseWithCompany(OrderResponse):
    company: Company


class OrderResponseWithOrder(OrderResponse):
    order: Order


# --- Reviews ---
class ReviewCreate(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    order_id: Optional[int] = None


class Review(CamelModel):
    id: int
    company_id: int
    customer_id: str
    order_id: Optional[int] = None
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class ReviewWithCustomer(Review):
    customer: User


# --- Composite read models ---
class CompanyDetail(CompanyWithTariff):
    reviews: List[ReviewWithCustomer] = Field(default_factory=list)


class OrderDetail(OrderWithCustomer):
    responses: List[OrderResponseWithCompany] = Field(default_factory=list)


class CurrentUser(User):
    company: Optional[CompanyWithTariff] = None


# --- Listing ---
class CompanyFilters(BaseModel):
    category: Optional[str] = None
    region: Optional[str] = None
    search: Optional[str] = None
    limit: int = 20
    offset: int = 0


class OrderFilters(BaseModel):
    category: Optional[str] = None
    region: Optional[str] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    search: Optional[str] = None
    status: str = "active"
    limit: int = 20
    offset: int = 0


class CompanySearchResult(CamelModel):
    companies: List[CompanyWithTariff]
    total: int


class OrderSearchResult(CamelModel):
    orders: List[OrderWithCustomer]
    total: int


class Stats(CamelModel):
    total_companies: int
    total_orders: int
    total_regions: int
    total_volume: int
