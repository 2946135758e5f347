"""Domain errors raised by the policy and data layers.

Each carries the HTTP status the API maps it to; ``main.py`` registers one
handler for the whole family.
"""
from fastapi import status


class MarketplaceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
