import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import crud
import models
import schemas
import search
from errors import ConflictError


def _respond(db: Session, order_id: int, company_id: int, message: str = "We can do it") -> models.OrderResponse:
    return crud.create_order_response(
        db,
        schemas.OrderResponseCreate(message=message, proposed_price="95000"),
        order_id=order_id,
        company_id=company_id,
    )


def _review(db: Session, company_id: int, customer_id: str, rating: int) -> models.Review:
    return crud.create_review(
        db, schemas.ReviewCreate(rating=rating, comment="ok"), company_id=company_id, customer_id=customer_id
    )


# --- Orders ---
def test_create_order_starts_active_with_no_responses(db_session: Session, make_user):
    customer = make_user()

    order = crud.create_order(
        db_session,
        schemas.OrderCreate(title="Laser cutting", budget=100000, deadline="2026-12-01"),
        customer_id=customer.id,
    )

    assert order.id is not None
    assert order.status == "active"
    assert order.response_count == 0
    assert order.customer_id == customer.id
    assert order.budget == Decimal("100000")
    assert order.attachments == []


def test_update_order_is_partial(db_session: Session, make_user, make_order):
    order = make_order(make_user(), title="Original", region="kazan", budget=Decimal("1000"))

    updated = crud.update_order(db_session, order.id, schemas.OrderUpdate(title="Renamed", is_urgent=True))

    assert updated.title == "Renamed"
    assert updated.is_urgent is True
    assert updated.region == "kazan"
    assert updated.budget == Decimal("1000")
    assert updated.updated_at is not None


def test_update_missing_order_returns_none(db_session: Session):
    assert crud.update_order(db_session, 424242, schemas.OrderUpdate(title="x")) is None


# --- Companies ---
def test_create_company_starts_unrated(db_session: Session, make_user):
    owner = make_user()

    company = crud.create_company(db_session, schemas.CompanyCreate(name="Volga Castings", tags=["casting"]), owner.id)

    assert company.rating == Decimal("0")
    assert company.review_count == 0
    assert company.is_verified is False
    assert company.is_active is True
    assert company.tags == ["casting"]


def test_second_company_for_same_user_is_a_conflict(db_session: Session, make_user):
    owner = make_user()
    crud.create_company(db_session, schemas.CompanyCreate(name="First"), owner.id)

    with pytest.raises(ConflictError):
        crud.create_company(db_session, schemas.CompanyCreate(name="Second"), owner.id)

    assert db_session.query(models.Company).filter(models.Company.user_id == owner.id).count() == 1


def test_update_company_cannot_touch_rating(db_session: Session, make_user, make_company):
    company = make_company(make_user(), name="Before")

    # rating is not part of the update payload, so it is silently dropped
    updates = schemas.CompanyUpdate.model_validate({"name": "After", "rating": "5.00", "reviewCount": 99})
    updated = crud.update_company(db_session, company.id, updates)

    assert updated.name == "After"
    assert updated.rating == Decimal("0")
    assert updated.review_count == 0


# --- Responses ---
def test_two_responses_give_response_count_two(db_session: Session, make_user, make_company, make_order):
    customer = make_user()
    order = crud.create_order(db_session, schemas.OrderCreate(title="Castings", budget=100000), customer.id)
    first = make_company(make_user())
    second = make_company(make_user())

    _respond(db_session, order.id, first.id)
    response = _respond(db_session, order.id, second.id)

    assert response.status == "pending"
    fetched = search.get_order(db_session, order.id)
    db_session.refresh(fetched)
    assert fetched.response_count == 2
    assert len(search.get_order_responses(db_session, order.id)) == 2


def test_responses_listed_newest_first_with_counterpart(db_session: Session, make_user, make_company, make_order):
    customer = make_user()
    order_a = make_order(customer, title="A")
    order_b = make_order(customer, title="B")
    company = make_company(make_user(), name="Bidder")

    _respond(db_session, order_a.id, company.id, "first")
    _respond(db_session, order_b.id, company.id, "second")

    company_responses = search.get_company_responses(db_session, company.id)
    assert [r.message for r in company_responses] == ["second", "first"]
    assert [r.order.title for r in company_responses] == ["B", "A"]

    order_responses = search.get_order_responses(db_session, order_a.id)
    assert [r.company.name for r in order_responses] == ["Bidder"]


def test_response_for_missing_order_leaves_nothing_behind(db_session: Session, make_user, make_company):
    company = make_company(make_user())

    with pytest.raises(IntegrityError):
        _respond(db_session, 999999, company.id)

    assert db_session.query(models.OrderResponse).count() == 0


def test_update_response_status(db_session: Session, make_user, make_company, make_order):
    order = make_order(make_user())
    response = _respond(db_session, order.id, make_company(make_user()).id)

    updated = crud.update_order_response_status(db_session, response.id, "accepted")

    assert updated.status == "accepted"
    assert crud.update_order_response_status(db_session, 999999, "rejected") is None


@pytest.mark.asyncio
async def test_concurrent_responses_are_all_counted(session_factory, make_user, make_company, make_order):
    order_id = make_order(make_user()).id
    company_ids = [make_company(make_user()).id for _ in range(8)]

    def respond(company_id: int) -> None:
        with session_factory() as db:
            _respond(db, order_id, company_id)

    await asyncio.gather(*(asyncio.to_thread(respond, company_id) for company_id in company_ids))

    with session_factory() as db:
        order = db.get(models.Order, order_id)
        assert order.response_count == len(company_ids)
        assert db.query(models.OrderResponse).filter(models.OrderResponse.order_id == order_id).count() == len(
            company_ids
        )


# --- Reviews ---
def test_reviews_recompute_rating_and_count(db_session: Session, make_user, make_company):
    company = make_company(make_user())

    for rating in (5, 3, 4):
        _review(db_session, company.id, make_user().id, rating)

    db_session.refresh(company)
    assert company.rating == Decimal("4.00")
    assert company.review_count == 3


def test_rating_rounds_to_two_places(db_session: Session, make_user, make_company):
    company = make_company(make_user())

    for rating in (5, 4, 4):
        _review(db_session, company.id, make_user().id, rating)

    db_session.refresh(company)
    assert company.rating == Decimal("4.33")


def test_review_only_affects_its_company(db_session: Session, make_user, make_company):
    reviewed = make_company(make_user())
    untouched = make_company(make_user())

    _review(db_session, reviewed.id, make_user().id, 2)

    db_session.refresh(untouched)
    assert untouched.rating == Decimal("0")
    assert untouched.review_count == 0


def test_company_reviews_carry_reviewer(db_session: Session, make_user, make_company):
    company = make_company(make_user())
    reviewer = make_user(first_name="Oleg")

    _review(db_session, company.id, reviewer.id, 5)

    reviews = search.get_company_reviews(db_session, company.id)
    assert [r.customer.first_name for r in reviews] == ["Oleg"]


@pytest.mark.asyncio
async def test_concurrent_reviews_keep_aggregate_consistent(session_factory, make_user, make_company):
    company_id = make_company(make_user()).id
    ratings = [5, 1, 4, 2, 3, 5, 4, 4]
    reviewer_ids = [make_user().id for _ in ratings]

    def review(customer_id: str, rating: int) -> None:
        with session_factory() as db:
            _review(db, company_id, customer_id, rating)

    await asyncio.gather(
        *(asyncio.to_thread(review, customer_id, rating) for customer_id, rating in zip(reviewer_ids, ratings))
    )

    with session_factory() as db:
        company = db.get(models.Company, company_id)
        assert company.review_count == len(ratings)
        assert company.rating == Decimal(sum(ratings)) / len(ratings)


# --- Users ---
def test_upsert_user_inserts_then_updates(db_session: Session):
    created = crud.upsert_user(db_session, schemas.UserUpsert(id="sub-1", email="a@example.com", first_name="Anna"))
    assert created.role == "client"

    updated = crud.upsert_user(db_session, schemas.UserUpsert(id="sub-1", email="a@example.com", first_name="Anya"))

    assert updated.first_name == "Anya"
    assert db_session.query(models.User).count() == 1
