"""Authentication against the hosted auth provider.

This module provides:

1. ``get_current_user``, a FastAPI dependency that extracts the
   ``Authorization: Bearer <access_token>`` header, verifies the JWT against the
   provider's cached JSON Web Key Set (signature, expiry, audience, issuer) and
   returns the caller's ``models.Profile``, creating the profile and candidate
   role rows on first sight.
2. Thin async wrappers around the provider's REST API for email/password
   signup and login, plus the OAuth authorize URL.

Settings used (see ``settings.py``):
    AUTH_ENABLED            - when false every request acts as the local dev user
    AUTH_PROVIDER_URL       - e.g. "https://abcd.supabase.co"
    AUTH_PROVIDER_ANON_KEY  - public API key sent with proxied auth calls
    AUTH_JWT_AUDIENCE       - expected ``aud`` claim (default "authenticated")
"""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

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

LOCAL_USER_ID = "local-dev"
LOCAL_USER_EMAIL = "local@example.com"


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: int
    aud: str
    user_metadata: dict[str, Any] = {}


class AuthProviderError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _issuer_or_500(settings: Settings) -> str:
    if not settings.auth_issuer:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication provider is not configured",
        )
    return settings.auth_issuer


@lru_cache
def _get_jwks(jwks_url: str):
    logger.info("Fetching JWKS", jwks_url=jwks_url)
    resp = httpx.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_token(token: str, settings: Optional[Settings] = None) -> TokenPayload:
    """Verify a provider-issued JWT and return its payload.

    Raises HTTPException(401) on failure.
    """
    settings = settings or get_settings()
    issuer = _issuer_or_500(settings)
    jwks = _get_jwks(f"{issuer}/.well-known/jwks.json")

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256", "ES256"],
            audience=settings.auth_jwt_audience,
            issuer=issuer,
            options={"verify_at_hash": False},
        )
        return TokenPayload.model_validate(payload)
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return authorization.split(" ", 1)[1]


async def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
) -> models.Profile:
    if not get_settings().auth_enabled:
        # Local dev: always return / create the default user
        profile = crud.ensure_user(db, LOCAL_USER_ID, LOCAL_USER_EMAIL, full_name="Local Developer")
        db.commit()
        return profile

    payload = verify_token(_bearer_token(authorization))
    profile = crud.ensure_user(
        db,
        payload.sub,
        payload.email or payload.sub,
        full_name=payload.user_metadata.get("full_name"),
    )
    db.commit()
    return profile


# --- Provider REST API ---
def _provider_headers(settings: Settings) -> dict:
    return {"apikey": settings.auth_provider_anon_key or "", "Content-Type": "application/json"}


def _provider_error(response: httpx.Response) -> AuthProviderError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or response.text
    )
    return AuthProviderError(response.status_code, message)


def _session_from(body: dict) -> schemas.AuthSession:
    user = body.get("user") or body
    return schemas.AuthSession(
        access_token=body.get("access_token"),
        refresh_token=body.get("refresh_token"),
        expires_in=body.get("expires_in"),
        user_id=user["id"],
        email=user.get("email"),
    )


async def sign_up(
    request: schemas.SignupRequest,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> schemas.AuthSession:
    issuer = _issuer_or_500(settings)
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10)
    try:
        response = await client.post(
            f"{issuer}/signup",
            json={
                "email": request.email,
                "password": request.password,
                "data": {"full_name": request.full_name},
            },
            headers=_provider_headers(settings),
        )
    finally:
        if owns_client:
            await client.aclose()
    if response.is_error:
        raise _provider_error(response)
    return _session_from(response.json())


async def sign_in_with_password(
    request: schemas.LoginRequest,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> schemas.AuthSession:
    issuer = _issuer_or_500(settings)
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10)
    try:
        response = await client.post(
            f"{issuer}/token",
            params={"grant_type": "password"},
            json={"email": request.email, "password": request.password},
            headers=_provider_headers(settings),
        )
    finally:
        if owns_client:
            await client.aclose()
    if response.is_error:
        raise _provider_error(response)
    return _session_from(response.json())


def oauth_authorize_url(provider: str, settings: Settings) -> str:
    issuer = _issuer_or_500(settings)
    query = urlencode(
        {"provider": provider, "redirect_to": f"{settings.app_base_url.rstrip('/')}/dashboard"}
    )
    return f"{issuer}/authorize?{query}"
