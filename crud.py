from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import schemas
from errors import ConflictError

logger = structlog.get_logger(__name__)

TWO_PLACES = Decimal("0.01")


# --- User CRUD ---
def upsert_user(db: Session, user: schemas.UserUpsert) -> models.User:
    """Insert the user on first login, refresh the profile fields afterwards."""
    fields = user.model_dump(exclude={"id"})
    db_user = db.get(models.User, user.id)
    if db_user is None:
        db_user = models.User(id=user.id, **fields)
        db.add(db_user)
        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent first login for the same subject
            db.rollback()
            db_user = db.get(models.User, user.id)
            if db_user is None:
                raise
        else:
            logger.info("User created", user_id=user.id)
        db.refresh(db_user)
        return db_user

    changed = {key: value for key, value in fields.items() if getattr(db_user, key) != value}
    if changed:
        for key, value in changed.items():
            setattr(db_user, key, value)
        db_user.updated_at = func.now()
        db.commit()
        db.refresh(db_user)
    return db_user


# --- Company CRUD ---
def create_company(db: Session, company: schemas.CompanyCreate, user_id: str) -> models.Company:
    db_company = models.Company(
        **company.model_dump(),
        user_id=user_id,
        rating=Decimal("0"),
        review_count=0,
        is_verified=False,
    )
    db.add(db_company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # companies.user_id is unique; a concurrent create slipped past the policy check
        if db.query(models.Company.id).filter(models.Company.user_id == user_id).first():
            raise ConflictError("User already has a company")
        raise
    db.refresh(db_company)
    logger.info("Company created", company_id=db_company.id, user_id=user_id)
    return db_company


def update_company(db: Session, company_id: int, updates: schemas.CompanyUpdate) -> Optional[models.Company]:
    db_company = db.get(models.Company, company_id)
    if not db_company:
        return None

    for key, value in updates.model_dump(exclude_unset=True).items():
        setattr(db_company, key, value)
    db_company.updated_at = func.now()
    db.commit()
    db.refresh(db_company)
    return db_company


# --- Order CRUD ---
def create_order(db: Session, order: schemas.OrderCreate, customer_id: str) -> models.Order:
    db_order = models.Order(**order.model_dump(), customer_id=customer_id, response_count=0)
    db.add(db_order)
    db.commit()
    db.refresh(db_order)
    logger.info("Order created", order_id=db_order.id, customer_id=customer_id)
    return db_order


def update_order(db: Session, order_id: int, updates: schemas.OrderUpdate) -> Optional[models.Order]:
    db_order = db.get(models.Order, order_id)
    if not db_order:
        return None

    for key, value in updates.model_dump(exclude_unset=True).items():
        setattr(db_order, key, value)
    db_order.updated_at = func.now()
    db.commit()
    db.refresh(db_order)
    return db_order


# --- Order response CRUD ---
def create_order_response(
    db: Session, response: schemas.OrderResponseCreate, order_id: int, company_id: int
) -> models.OrderResponse:
    """Store a company's bid and bump the order's response counter in one transaction.

    The counter is incremented in SQL (``response_count + 1``) rather than
    read and written back, so concurrent bids on the same order all count.
    """
    db_response = models.OrderResponse(
        **response.model_dump(),
        order_id=order_id,
        company_id=company_id,
        status="pending",
    )
    try:
        db.add(db_response)
        db.flush()
        db.query(models.Order).filter(models.Order.id == order_id).update(
            {
                models.Order.response_count: models.Order.response_count + 1,
                models.Order.updated_at: func.now(),
            },
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_response)
    logger.info("Order response created", response_id=db_response.id, order_id=order_id, company_id=company_id)
    return db_response


def update_order_response_status(
    db: Session, response_id: int, status: str
) -> Optional[models.OrderResponse]:
    db_response = db.get(models.OrderResponse, response_id)
    if not db_response:
        return None

    db_response.status = status
    db.commit()
    db.refresh(db_response)
    logger.info("Order response status changed", response_id=response_id, status=status)
    return db_response


# --- Review CRUD ---
def create_review(
    db: Session, review: schemas.ReviewCreate, company_id: int, customer_id: str
) -> models.Review:
    """Store a review and recompute the company's rating and review count.

    The company row is locked (``FOR NO KEY UPDATE`` on PostgreSQL, which
    does not clash with the key-share lock the review's foreign key takes)
    before the aggregate is read, so concurrent reviews of one company are
    applied one after another and none is left out of the average.
    """
    db_review = models.Review(**review.model_dump(), company_id=company_id, customer_id=customer_id)
    try:
        db.add(db_review)
        db.flush()

        db_company = (
            db.query(models.Company)
            .filter(models.Company.id == company_id)
            .with_for_update(key_share=True)
            .one()
        )
        average, count = (
            db.query(func.avg(models.Review.rating), func.count(models.Review.id))
            .filter(models.Review.company_id == company_id)
            .one()
        )
        db_company.rating = Decimal(str(average or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        db_company.review_count = count
        db_company.updated_at = func.now()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_review)
    logger.info(
        "Review created",
        review_id=db_review.id,
        company_id=company_id,
        rating=review.rating,
        review_count=count,
    )
    return db_review
