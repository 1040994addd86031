# flowaid/auth.py
# ─────────────────────────────────────────────────────────────────────────────
# Caller identity from identity-provider session tokens (HS256/RS256 JWT)
# ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt  # PyJWT
from flask import current_app, request

from flowaid.errors import AuthenticationRequired

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    user_id: str
    email: Optional[str]
    full_name: Optional[str] = None
    is_admin: bool = False


def _normalize_pem(s: str) -> str:
    """Normalize PEM strings that may contain escaped newlines."""
    return s.replace("\\n", "\n") if "BEGIN" in s and "\\n" in s else s


def bearer_token(header: Optional[str] = None) -> Optional[str]:
    """Extract bearer token from an Authorization header (defaults to the current request)."""
    h = header if header is not None else request.headers.get("Authorization", "")
    h = (h or "").strip()
    if not h.lower().startswith("bearer "):
        return None
    tok = h.split(" ", 1)[1].strip()
    return tok or None


def _is_admin(claims: Dict[str, Any]) -> bool:
    app_meta = claims.get("app_metadata") if isinstance(claims.get("app_metadata"), dict) else {}
    role = str(app_meta.get("role") or "").lower()
    roles = app_meta.get("roles") if isinstance(app_meta.get("roles"), (list, tuple)) else []
    return role == "admin" or "admin" in {str(r).lower() for r in roles}


def decode_session_token(token: str) -> Caller:
    """Verify a session JWT and return the caller. Raises AuthenticationRequired."""
    secret = str(current_app.config.get("AUTH_JWT_SECRET") or "")
    alg = str(current_app.config.get("AUTH_JWT_ALG") or "HS256")
    audience = current_app.config.get("AUTH_JWT_AUDIENCE") or None

    if not secret:
        log.error("AUTH_JWT_SECRET not configured; cannot verify session tokens")
        raise AuthenticationRequired("Unauthorized")

    try:
        claims = jwt.decode(
            token,
            key=_normalize_pem(secret),
            algorithms=[alg],
            audience=audience,
            options={"verify_aud": bool(audience), "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired("Session expired")
    except jwt.InvalidTokenError as e:
        log.info("Rejected session token: %s", e)
        raise AuthenticationRequired("Unauthorized")

    user_meta = claims.get("user_metadata") if isinstance(claims.get("user_metadata"), dict) else {}
    return Caller(
        user_id=str(claims["sub"]),
        email=(str(claims.get("email") or "").strip().lower() or None),
        full_name=(str(user_meta.get("full_name") or "").strip() or None),
        is_admin=_is_admin(claims),
    )


def authenticate(header: Optional[str] = None) -> Caller:
    tok = bearer_token(header)
    if not tok:
        raise AuthenticationRequired("Unauthorized")
    return decode_session_token(tok)


def optional_caller(header: Optional[str] = None) -> Optional[Caller]:
    tok = bearer_token(header)
    if not tok:
        return None
    return decode_session_token(tok)
