from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import models
import policy
import schemas
import search
import stats
from auth import get_current_user
from database import build_engine, build_session_factory, create_db_and_tables, get_db
from errors import MarketplaceError, NotFoundError
from observability import init_observability
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api")


def _page_size(limit: Optional[int], settings: Settings) -> int:
    return min(limit or settings.default_page_size, settings.max_page_size)


def _ensure_tariff(db: Session, tariff_id: Optional[int]) -> None:
    if tariff_id is not None and search.get_tariff(db, tariff_id) is None:
        raise NotFoundError("Tariff not found")


def _ensure_budget_range(order: models.Order, updates: schemas.OrderUpdate) -> None:
    """Check the range the order would have once the patch is applied."""
    patched = updates.model_fields_set
    try:
        schemas.validate_budget_range(
            updates.budget_min if "budget_min" in patched else order.budget_min,
            updates.budget_max if "budget_max" in patched else order.budget_max,
        )
    except ValueError as exc:
        raise RequestValidationError(
            [{"type": "value_error", "loc": ("body",), "msg": f"Value error, {exc}"}]
        ) from exc


# --- Auth ---
@router.get("/auth/user", response_model=schemas.CurrentUser, tags=["Auth"])
def get_me(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Returns the authenticated user's record together with their company, if any."""
    company = search.get_company_by_user_id(db, current_user.id)
    return schemas.CurrentUser(
        **schemas.User.model_validate(current_user).model_dump(),
        company=schemas.CompanyWithTariff.model_validate(company) if company else None,
    )


# --- Landing page ---
@router.get("/stats", response_model=schemas.Stats, tags=["Landing"])
def get_stats_endpoint(db: Session = Depends(get_db)):
    return stats.get_stats(db)


@router.get("/featured/orders", response_model=List[schemas.OrderWithCustomer], tags=["Landing"])
def featured_orders_endpoint(
    limit: Optional[int] = Query(None, ge=1, le=50),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return search.get_featured_orders(db, limit or settings.featured_limit)


@router.get("/featured/companies", response_model=List[schemas.CompanyWithTariff], tags=["Landing"])
def featured_companies_endpoint(
    limit: Optional[int] = Query(None, ge=1, le=50),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return search.get_featured_companies(db, limit or settings.featured_limit)


# --- Orders ---
@router.get("/orders", response_model=schemas.OrderSearchResult, tags=["Orders"])
def search_orders_endpoint(
    category: Optional[str] = None,
    region: Optional[str] = None,
    budget_min: Optional[Decimal] = Query(None, alias="budgetMin", ge=0),
    budget_max: Optional[Decimal] = Query(None, alias="budgetMax", ge=0),
    search_text: Optional[str] = Query(None, alias="search"),
    order_status: str = Query("active", alias="status"),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filters = schemas.OrderFilters(
        category=category,
        region=region,
        budget_min=budget_min,
        budget_max=budget_max,
        search=search_text,
        status=order_status or "active",
        limit=_page_size(limit, settings),
        offset=offset,
    )
    orders, total = search.search_orders(db, filters)
    return {"orders": orders, "total": total}


@router.get("/orders/{order_id}", response_model=schemas.OrderDetail, tags=["Orders"])
def get_order_endpoint(order_id: int, db: Session = Depends(get_db)):
    order = search.get_order(db, order_id)
    if not order:
        raise NotFoundError("Order not found")

    responses = search.get_order_responses(db, order_id)
    return schemas.OrderDetail(
        **schemas.OrderWithCustomer.model_validate(order).model_dump(),
        responses=[schemas.OrderResponseWithCompany.model_validate(r) for r in responses],
    )


@router.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
def create_order_endpoint(
    order: schemas.OrderCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.create_order(db, order, customer_id=current_user.id)


@router.patch("/orders/{order_id}", response_model=schemas.Order, tags=["Orders"])
def update_order_endpoint(
    order_id: int,
    updates: schemas.OrderUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    existing = db.get(models.Order, order_id)
    if not existing:
        raise NotFoundError("Order not found")
    policy.ensure_order_owner(existing, current_user.id)
    _ensure_budget_range(existing, updates)

    order = crud.update_order(db, order_id, updates)
    if not order:
        raise NotFoundError("Order not found")
    logger.info("Order updated", order_id=order_id, fields=sorted(updates.model_fields_set))
    return order


# --- Order responses ---
@router.post(
    "/orders/{order_id}/responses",
    response_model=schemas.OrderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Responses"],
)
def create_order_response_endpoint(
    order_id: int,
    response: schemas.OrderResponseCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not db.get(models.Order, order_id):
        raise NotFoundError("Order not found")
    company = policy.require_company(search.get_company_by_user_id(db, current_user.id), current_user.id)

    return crud.create_order_response(db, response, order_id=order_id, company_id=company.id)


@router.patch("/order-responses/{response_id}/status", response_model=schemas.OrderResponse, tags=["Responses"])
def update_order_response_status_endpoint(
    response_id: int,
    update: schemas.OrderResponseStatusUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    existing = search.get_order_response(db, response_id)
    if not existing:
        raise NotFoundError("Response not found")
    own_company = search.get_company_by_user_id(db, current_user.id)
    policy.ensure_response_party(existing, current_user.id, own_company, update.status)

    response = crud.update_order_response_status(db, response_id, update.status)
    if not response:
        raise NotFoundError("Response not found")
    return response


# --- Companies ---
@router.get("/companies", response_model=schemas.CompanySearchResult, tags=["Companies"])
def search_companies_endpoint(
    category: Optional[str] = None,
    region: Optional[str] = None,
    search_text: Optional[str] = Query(None, alias="search"),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filters = schemas.CompanyFilters(
        category=category,
        region=region,
        search=search_text,
        limit=_page_size(limit, settings),
        offset=offset,
    )
    companies, total = search.search_companies(db, filters)
    return {"companies": companies, "total": total}


@router.get("/companies/{company_id}", response_model=schemas.CompanyDetail, tags=["Companies"])
def get_company_endpoint(company_id: int, db: Session = Depends(get_db)):
    company = search.get_company(db, company_id)
    if not company:
        raise NotFoundError("Company not found")

    reviews = search.get_company_reviews(db, company_id)
    return schemas.CompanyDetail(
        **schemas.CompanyWithTariff.model_validate(company).model_dump(),
        reviews=[schemas.ReviewWithCustomer.model_validate(r) for r in reviews],
    )


@router.post("/companies", response_model=schemas.Company, status_code=status.HTTP_201_CREATED, tags=["Companies"])
def create_company_endpoint(
    company: schemas.CompanyCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    policy.ensure_no_company(search.get_company_by_user_id(db, current_user.id), current_user.id)
    _ensure_tariff(db, company.tariff_id)

    return crud.create_company(db, company, user_id=current_user.id)


@router.patch("/companies/{company_id}", response_model=schemas.Company, tags=["Companies"])
def update_company_endpoint(
    company_id: int,
    updates: schemas.CompanyUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    existing = db.get(models.Company, company_id)
    if not existing:
        raise NotFoundError("Company not found")
    policy.ensure_company_owner(existing, current_user.id)
    _ensure_tariff(db, updates.tariff_id)

    company = crud.update_company(db, company_id, updates)
    if not company:
        raise NotFoundError("Company not found")
    logger.info("Company updated", company_id=company_id, fields=sorted(updates.model_fields_set))
    return company


# --- Reviews ---
@router.post(
    "/companies/{company_id}/reviews",
    response_model=schemas.Review,
    status_code=status.HTTP_201_CREATED,
    tags=["Reviews"],
)
def create_review_endpoint(
    company_id: int,
    review: schemas.ReviewCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company = db.get(models.Company, company_id)
    if not company:
        raise NotFoundError("Company not found")
    policy.ensure_can_review(company, current_user.id)
    if review.order_id is not None and not db.get(models.Order, review.order_id):
        raise NotFoundError("Order not found")

    return crud.create_review(db, review, company_id=company_id, customer_id=current_user.id)


# --- Tariffs ---
@router.get("/tariffs", response_model=List[schemas.Tariff], tags=["Tariffs"])
def get_tariffs_endpoint(db: Session = Depends(get_db)):
    return search.get_tariffs(db)


# --- Dashboard ---
@router.get("/dashboard/my-orders", response_model=List[schemas.OrderWithCustomer], tags=["Dashboard"])
def my_orders_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return search.get_user_orders(db, current_user.id)


@router.get("/dashboard/my-responses", response_model=List[schemas.OrderResponseWithOrder], tags=["Dashboard"])
def my_responses_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company = search.get_company_by_user_id(db, current_user.id)
    if not company:
        return []
    return search.get_company_responses(db, company.id)


@router.get("/dashboard/my-payments", response_model=List[schemas.Payment], tags=["Dashboard"])
def my_payments_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company = search.get_company_by_user_id(db, current_user.id)
    if not company:
        return []
    return search.get_company_payments(db, company.id)


# --- Error handlers ---
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Storage failure", error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Storage failure"},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and its store handle.

    The engine and session factory are created here, once per process, and
    kept on ``app.state``; request handlers reach them through ``get_db``.
    """
    settings = settings or get_settings()
    init_observability(settings)

    engine = build_engine(settings.sqlalchemy_database_url)
    if settings.create_tables_on_startup:
        create_db_and_tables(engine)

    app = FastAPI(
        title="ProdMarket",
        description="Backend API for the ProdMarket manufacturing marketplace",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)

    app.include_router(router)

    logger.info("Application created", database=engine.url.render_as_string(hide_password=True))
    return app


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
