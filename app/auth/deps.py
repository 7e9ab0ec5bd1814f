from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, Optional

import jwt
import requests
from fastapi import Request

from app.core.errors import UnauthorizedError
from app.core.settings import S


def _provider_enabled() -> bool:
    return bool(S.auth_issuer or S.auth_jwks_url)


def _jwks_url() -> str:
    return S.auth_jwks_url or f"{S.auth_issuer}/.well-known/jwks.json"


@lru_cache(maxsize=1)
def _provider_jwks() -> Dict[str, Any]:
    resp = requests.get(_jwks_url(), timeout=10)
    resp.raise_for_status()
    return resp.json()


def _find_key(kid: str) -> Optional[Dict[str, Any]]:
    return next((k for k in _provider_jwks().get("keys", []) if k.get("kid") == kid), None)


def _resolve_signing_key(kid: str) -> Dict[str, Any]:
    key = _find_key(kid)
    if key is None:
        # Keys rotated since the set was cached.
        _provider_jwks.cache_clear()
        key = _find_key(kid)
    if key is None:
        raise UnauthorizedError("Unknown signing key id")
    return key


def _decode_provider_token(token: str) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid token header") from exc

    public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(_resolve_signing_key(header.get("kid", ""))))
    try:
        return jwt.decode(
            token,
            public_key,
            algorithms=["RS256"],
            audience=S.auth_audience or None,
            issuer=S.auth_issuer or None,
            options={"verify_aud": bool(S.auth_audience)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid token") from exc


def extract_bearer_token(auth_header: Optional[str]) -> str:
    scheme, _, token = (auth_header or "").partition(" ")
    if not scheme:
        raise UnauthorizedError("Missing Authorization header")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Invalid Authorization header")
    return token.strip()


async def get_authenticated_user_sub(request: Request) -> str:
    """
    Resolve the caller's user id.

    With AUTH_ISSUER / AUTH_JWKS_URL set, the bearer token must be a JWT signed
    by the provider and its ``sub`` is the user id. Without a provider (local
    development) the ``x-user-sub`` header or the raw bearer value is the user id.
    """
    if not _provider_enabled():
        return request.headers.get("x-user-sub") or extract_bearer_token(request.headers.get("authorization"))

    payload = _decode_provider_token(extract_bearer_token(request.headers.get("authorization")))
    user_sub = payload.get("sub")
    if not user_sub:
        raise UnauthorizedError("Token missing subject")
    return str(user_sub)
