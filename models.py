from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # identity provider subject
    email = Column(String, unique=True, index=True, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)
    role = Column(String, nullable=False, default="client")  # client, company, admin
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="owner", uselist=False)
    orders = relationship("Order", back_populates="customer")
    reviews = relationship("Review", back_populates="customer")


class Tariff(Base):
    __tablename__ = "tariffs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    price = Column(Integer, nullable=False)  # whole currency units, 0 = free
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    logo_url = Column(Text, nullable=True)
    website = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    region = Column(String(100), nullable=True, index=True)
    category = Column(String(100), nullable=True, index=True)
    tags = Column(JSON, default=list)
    tariff_id = Column(Integer, ForeignKey("tariffs.id"), nullable=True)
    # rating / review_count are only ever written by crud.create_review
    rating = Column(Numeric(3, 2), nullable=False, default=0)
    review_count = Column(Integer, nullable=False, default=0)
    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="company", foreign_keys=[user_id])
    tariff = relationship("Tariff")
    responses = relationship("OrderResponse", back_populates="company")
    reviews = relationship("Review", back_populates="company")
    payments = relationship("Payment", back_populates="company")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    budget = Column(Numeric(12, 2), nullable=True)
    budget_min = Column(Numeric(12, 2), nullable=True)
    budget_max = Column(Numeric(12, 2), nullable=True)
    deadline = Column(Date, nullable=True)
    region = Column(String(100), nullable=True, index=True)
    requirements = Column(Text, nullable=True)
    attachments = Column(JSON, default=list)
    status = Column(String(50), nullable=False, default="active")  # active, completed, cancelled
    response_count = Column(Integer, nullable=False, default=0)
    is_urgent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("User", back_populates="orders", foreign_keys=[customer_id])
    responses = relationship("OrderResponse", back_populates="order")


class OrderResponse(Base):
    __tablename__ = "order_responses"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    message = Column(Text, nullable=True)
    proposed_price = Column(Numeric(12, 2), nullable=True)
    proposed_deadline = Column(Date, nullable=True)
    attachments = Column(JSON, default=list)
    status = Column(String(50), nullable=False, default="pending")  # pending, accepted, rejected
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="responses")
    company = relationship("Company", back_populates="responses")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = Column(String, ForeignKey("users.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    rating = Column(Integer, nullable=False)  # 1..5
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="reviews")
    customer = relationship("User", back_populates="reviews", foreign_keys=[customer_id])
    order = relationship("Order")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    tariff_id = Column(Integer, ForeignKey("tariffs.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(50), nullable=False, default="pending")  # pending, completed, failed
    payment_date = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=True)

    company = relationship("Company", back_populates="payments")
    tariff = relationship("Tariff")
