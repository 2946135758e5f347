"""Ownership rules checked before every mutation.

All helpers take already-loaded rows so callers can report a missing entity
as 404 first and only then fall through to the 403 checks here.
"""
from typing import Optional

import structlog

import models
from errors import ConflictError, ForbiddenError

logger = structlog.get_logger(__name__)


def _deny(message: str, **context) -> None:
    logger.warning("Access denied", reason=message, **context)
    raise ForbiddenError(message)


def ensure_order_owner(order: models.Order, user_id: str) -> None:
    if order.customer_id != user_id:
        _deny("Access denied", order_id=order.id, user_id=user_id)


def ensure_company_owner(company: models.Company, user_id: str) -> None:
    if company.user_id != user_id:
        _deny("Access denied", company_id=company.id, user_id=user_id)


def ensure_no_company(existing: Optional[models.Company], user_id: str) -> None:
    if existing is not None:
        logger.warning("Second company rejected", user_id=user_id, company_id=existing.id)
        raise ConflictError("User already has a company")


def require_company(company: Optional[models.Company], user_id: str) -> models.Company:
    if company is None:
        _deny("User must have a company to respond to orders", user_id=user_id)
    return company


def ensure_response_party(
    response: models.OrderResponse, user_id: str, own_company: Optional[models.Company], new_status: str
) -> None:
    """The order's customer may set any status; the responding company may only withdraw."""
    if response.order.customer_id == user_id:
        return
    if own_company is not None and own_company.id == response.company_id:
        if new_status != "rejected":
            _deny("Only the order's customer can accept a response", response_id=response.id, user_id=user_id)
        return
    _deny("Access denied", response_id=response.id, user_id=user_id)


def ensure_can_review(company: models.Company, user_id: str) -> None:
    if company.user_id == user_id:
        _deny("Companies cannot review themselves", company_id=company.id, user_id=user_id)
