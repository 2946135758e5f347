"""Authentication helpers integrating AWS Cognito JWTs.

This module provides a FastAPI dependency ``get_current_user`` that:
1. Extracts the ``Authorization: Bearer <id_token>`` header.
2. Downloads / caches the JSON Web Key Set (JWKS) for your Cognito User Pool.
3. Verifies signature, expiration and audience.
4. Upserts the ``models.User`` row keyed by the token subject.

The token subject is the user's id everywhere else in the service; nothing
downstream re-checks credentials. With ``AUTH_ENABLED=false`` (local dev) a
fixed local user is used instead.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Optional

import httpx
import structlog
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import models
import schemas
from database import get_db
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

LOCAL_USER = schemas.UserUpsert(
    id="local-dev",
    email="local@example.com",
    first_name="Local",
    last_name="Developer",
)


class TokenPayload(BaseModel):
    sub: str
    exp: int
    aud: str
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None

    def to_user(self) -> schemas.UserUpsert:
        return schemas.UserUpsert(
            id=self.sub,
            email=self.email,
            first_name=self.given_name,
            last_name=self.family_name,
            profile_image_url=self.picture,
        )


class CognitoConfig(BaseModel):
    region: str
    user_pool_id: str
    client_id: str

    @property
    def issuer(self) -> str:  # cognito issuer URL
        return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


def _cognito_config(settings: Settings) -> CognitoConfig:
    if not settings.cognito_user_pool_id or not settings.cognito_app_client_id:
        logger.error("Cognito settings missing while auth is enabled")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is misconfigured",
        )
    return CognitoConfig(
        region=settings.aws_region or "us-east-1",
        user_pool_id=settings.cognito_user_pool_id,
        client_id=settings.cognito_app_client_id,
    )


@lru_cache
def _get_jwks(jwks_url: str) -> dict:
    logger.info("Fetching JWKS", jwks_url=jwks_url)
    resp = httpx.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """Verify a Cognito id token and return its payload.

    Raises HTTPException(401) on failure.
    """
    config = _cognito_config(settings)
    jwks = _get_jwks(config.jwks_url)

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=config.client_id,
            issuer=config.issuer,
            options={"verify_at_hash": False},
        )
        return TokenPayload.model_validate(payload)
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


# Helper to extract Authorization header (works with FastAPI DI)
def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


# --- FastAPI dependency ---
def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> models.User:
    if not settings.auth_enabled:
        # Local dev: always return / create the default user
        user = crud.upsert_user(db, LOCAL_USER)
        return user

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1]
    payload = verify_token(token, settings)

    user = crud.upsert_user(db, payload.to_user())
    return user
