from __future__ import annotations
from typing import Any, AsyncGenerator, Dict, List
from fastapi import Depends, Header, HTTPException, status
import time
import uuid
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .core.geocoding import NominatimGeocoder, build_geocoder

# JWKS is cached per process and refetched once an hour or on an unknown kid
_jwks_keys: List[Dict[str, Any]] = []
_jwks_fetched_at: float = 0.0
JWKS_TTL_SECONDS = 3600

async def fetch_jwks(*, force: bool = False) -> List[Dict[str, Any]]:
    global _jwks_keys, _jwks_fetched_at
    now = time.time()
    if force or not _jwks_keys or (now - _jwks_fetched_at) > JWKS_TTL_SECONDS:
        async with httpx.AsyncClient() as client:
            r = await client.get(get_settings().auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _jwks_keys = list(r.json().get("keys") or [])
            _jwks_fetched_at = now
    return _jwks_keys

def _pick_jwk(keys: List[Dict[str, Any]], kid: str | None) -> Dict[str, Any] | None:
    if kid:
        return next((k for k in keys if k.get("kid") == kid), None)
    return keys[0] if keys else None

async def get_signing_key(token: str):
    from jwt.algorithms import RSAAlgorithm
    kid = jwt.get_unverified_header(token).get("kid")
    jwk = _pick_jwk(await fetch_jwks(), kid)
    if jwk is None:
        # the auth service may have rotated keys since the last fetch
        jwk = _pick_jwk(await fetch_jwks(force=True), kid)
    if jwk is None:
        raise jwt.InvalidTokenError(f"no signing key for kid {kid!r}")
    return RSAAlgorithm.from_jwk(jwk)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        key = await get_signing_key(token)
        payload = jwt.decode(token, key=key, algorithms=["RS256"], options={"verify_aud": False})
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except (httpx.HTTPError, KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth keys unavailable")
    sub, role = payload.get("sub"), payload.get("role")
    if not sub or not role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        uuid.UUID(str(sub))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    return payload

def current_user_id(claims: Dict[str, Any]) -> uuid.UUID:
    return uuid.UUID(str(claims["sub"]))

async def require_admin(claims: dict = Depends(get_claims)) -> Dict[str, Any]:
    # membership of the event's organisation is checked upstream by the events service
    if claims.get("role") not in get_settings().admin_roles_set:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organiser role required")
    return claims

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

# one geocoder per process so the 1 req/s limit is shared by all requests
_geocoder: NominatimGeocoder | None = None

def get_geocoder() -> NominatimGeocoder:
    global _geocoder
    if _geocoder is None:
        _geocoder = build_geocoder()
    return _geocoder

async def close_geocoder() -> None:
    global _geocoder
    if _geocoder is not None:
        await _geocoder.aclose()
        _geocoder = None
