from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
import schemas

MILLION = Decimal(1_000_000)


def get_stats(db: Session) -> schemas.Stats:
    """Landing-page counters, recomputed from the tables on every call."""
    active_companies = db.query(models.Company).filter(models.Company.is_active.is_(True))
    active_orders = db.query(models.Order).filter(models.Order.status == "active")

    total_companies = active_companies.with_entities(func.count(models.Company.id)).scalar() or 0
    total_regions = (
        active_companies.with_entities(func.count(func.distinct(models.Company.region))).scalar() or 0
    )
    total_orders = active_orders.with_entities(func.count(models.Order.id)).scalar() or 0
    volume = active_orders.with_entities(func.coalesce(func.sum(models.Order.budget), 0)).scalar() or 0

    # Reported in millions of currency units
    total_volume = (Decimal(str(volume)) / MILLION).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return schemas.Stats(
        total_companies=total_companies,
        total_orders=total_orders,
        total_regions=total_regions,
        total_volume=int(total_volume),
    )
