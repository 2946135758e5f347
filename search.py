"""Read side of the marketplace: filtered listings, featured sets and lookups.

Every listing builds a predicate list once and uses it for both the page
query and the separate ``count`` query, so ``total`` never depends on
``limit``/``offset``.
"""
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

import models
import schemas


# --- Predicate builders ---
def company_conditions(filters: schemas.CompanyFilters) -> list:
    conditions = [models.Company.is_active.is_(True)]
    if filters.category:
        conditions.append(models.Company.category == filters.category)
    if filters.region:
        conditions.append(models.Company.region == filters.region)
    if filters.search:
        conditions.append(
            or_(
                models.Company.name.icontains(filters.search, autoescape=True),
                models.Company.description.icontains(filters.search, autoescape=True),
            )
        )
    return conditions


def order_conditions(filters: schemas.OrderFilters) -> list:
    # budget bounds only look at the single ``budget`` column, not the min/max range
    conditions = [models.Order.status == filters.status]
    if filters.category:
        conditions.append(models.Order.category == filters.category)
    if filters.region:
        conditions.append(models.Order.region == filters.region)
    if filters.budget_min is not None:
        conditions.append(models.Order.budget >= filters.budget_min)
    if filters.budget_max is not None:
        conditions.append(models.Order.budget <= filters.budget_max)
    if filters.search:
        conditions.append(
            or_(
                models.Order.title.icontains(filters.search, autoescape=True),
                models.Order.description.icontains(filters.search, autoescape=True),
            )
        )
    return conditions


# --- Companies ---
def search_companies(db: Session, filters: schemas.CompanyFilters) -> Tuple[List[models.Company], int]:
    conditions = company_conditions(filters)
    companies = (
        db.query(models.Company)
        .options(joinedload(models.Company.tariff))
        .filter(*conditions)
        .order_by(models.Company.rating.desc(), models.Company.created_at.desc(), models.Company.id.desc())
        .limit(filters.limit)
        .offset(filters.offset)
        .all()
    )
    total = db.query(func.count(models.Company.id)).filter(*conditions).scalar()
    return companies, total or 0


def get_featured_companies(db: Session, limit: int = 6) -> List[models.Company]:
    return (
        db.query(models.Company)
        .options(joinedload(models.Company.tariff))
        .filter(models.Company.is_active.is_(True), models.Company.is_verified.is_(True))
        .order_by(models.Company.rating.desc(), models.Company.review_count.desc(), models.Company.id.desc())
        .limit(limit)
        .all()
    )


def get_company(db: Session, company_id: int) -> Optional[models.Company]:
    return (
        db.query(models.Company)
        .options(joinedload(models.Company.tariff))
        .filter(models.Company.id == company_id)
        .first()
    )


def get_company_by_user_id(db: Session, user_id: str) -> Optional[models.Company]:
    return (
        db.query(models.Company)
        .options(joinedload(models.Company.tariff))
        .filter(models.Company.user_id == user_id)
        .first()
    )


def get_company_reviews(db: Session, company_id: int) -> List[models.Review]:
    return (
        db.query(models.Review)
        .options(joinedload(models.Review.customer))
        .filter(models.Review.company_id == company_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )


def get_company_responses(db: Session, company_id: int) -> List[models.OrderResponse]:
    """Responses a company has sent, each with the order it answers."""
    return (
        db.query(models.OrderResponse)
        .options(joinedload(models.OrderResponse.order))
        .filter(models.OrderResponse.company_id == company_id)
        .order_by(models.OrderResponse.created_at.desc(), models.OrderResponse.id.desc())
        .all()
    )


def get_company_payments(db: Session, company_id: int) -> List[models.Payment]:
    return (
        db.query(models.Payment)
        .filter(models.Payment.company_id == company_id)
        .order_by(models.Payment.payment_date.desc(), models.Payment.id.desc())
        .all()
    )


# --- Orders ---
def search_orders(db: Session, filters: schemas.OrderFilters) -> Tuple[List[models.Order], int]:
    conditions = order_conditions(filters)
    orders = (
        db.query(models.Order)
        .options(joinedload(models.Order.customer, innerjoin=True))
        .filter(*conditions)
        .order_by(models.Order.is_urgent.desc(), models.Order.created_at.desc(), models.Order.id.desc())
        .limit(filters.limit)
        .offset(filters.offset)
        .all()
    )
    total = db.query(func.count(models.Order.id)).filter(*conditions).scalar()
    return orders, total or 0


def get_featured_orders(db: Session, limit: int = 6) -> List[models.Order]:
    return (
        db.query(models.Order)
        .options(joinedload(models.Order.customer, innerjoin=True))
        .filter(models.Order.status == "active")
        .order_by(
            models.Order.is_urgent.desc(),
            models.Order.budget.desc().nulls_last(),
            models.Order.created_at.desc(),
            models.Order.id.desc(),
        )
        .limit(limit)
        .all()
    )


def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    return (
        db.query(models.Order)
        .options(joinedload(models.Order.customer, innerjoin=True))
        .filter(models.Order.id == order_id)
        .first()
    )


def get_user_orders(db: Session, user_id: str) -> List[models.Order]:
    return (
        db.query(models.Order)
        .options(joinedload(models.Order.customer, innerjoin=True))
        .filter(models.Order.customer_id == user_id)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .all()
    )


def get_order_responses(db: Session, order_id: int) -> List[models.OrderResponse]:
    """Responses received by an order, each with the responding company."""
    return (
        db.query(models.OrderResponse)
        .options(joinedload(models.OrderResponse.company))
        .filter(models.OrderResponse.order_id == order_id)
        .order_by(models.OrderResponse.created_at.desc(), models.OrderResponse.id.desc())
        .all()
    )


def get_order_response(db: Session, response_id: int) -> Optional[models.OrderResponse]:
    return (
        db.query(models.OrderResponse)
        .options(joinedload(models.OrderResponse.order))
        .filter(models.OrderResponse.id == response_id)
        .first()
    )


# --- Users / tariffs ---
def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_tariffs(db: Session) -> List[models.Tariff]:
    return (
        db.query(models.Tariff)
        .filter(models.Tariff.is_active.is_(True))
        .order_by(models.Tariff.price.asc(), models.Tariff.id.asc())
        .all()
    )


def get_tariff(db: Session, tariff_id: int) -> Optional[models.Tariff]:
    return db.query(models.Tariff).filter(models.Tariff.id == tariff_id).first()
