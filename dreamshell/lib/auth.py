"""
Bearer token authentication for the dreamshell API.

Tokens are HS256-signed JWTs. A token is accepted when:
- the Authorization header is "Bearer <token>"
- the signature verifies against the configured secret
- the claim set has a non-empty string "sub"
- "exp", if present, is numeric and strictly in the future

No other claims are interpreted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import jwt
from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dreamshell.lib.errors import Unauthorized

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
BEARER_PREFIX = "bearer "

# auto_error=False so a missing header reaches authorize() and gets our 401 body
bearer_scheme = HTTPBearer(auto_error=False, scheme_name="BearerToken")


@dataclass(frozen=True)
class Claims:
    """The interpreted subset of a token's claim set."""

    sub: str
    exp: Optional[float] = None


def extract_bearer(header_value: Optional[str]) -> str:
    """Pull the raw token out of an Authorization header value."""
    if not header_value:
        raise Unauthorized("missing Authorization header")
    if not header_value.lower().startswith(BEARER_PREFIX):
        raise Unauthorized("expected a Bearer token")
    token = header_value[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthorized("empty Bearer token")
    return token


def _validate_claims(payload: Any, now: float) -> Claims:
    if not isinstance(payload, dict):
        raise Unauthorized("malformed claim set")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise Unauthorized("token has no subject")

    exp = payload.get("exp")
    if exp is None:
        return Claims(sub=sub)
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise Unauthorized("malformed expiry")
    if not now < exp:
        raise Unauthorized("token expired")
    return Claims(sub=sub, exp=float(exp))


def authorize(header_value: Optional[str], secret: Optional[str], now: Optional[float] = None) -> Claims:
    """
    Validate an Authorization header value.

    Args:
        header_value: Raw header value, e.g. "Bearer eyJ..."
        secret: HMAC signing secret; when empty every token is rejected
        now: Epoch seconds to check expiry against (defaults to time.time())

    Returns:
        The validated Claims.

    Raises:
        Unauthorized for every failure; decode errors never escape as anything else.
    """
    token = extract_bearer(header_value)
    if not secret:
        raise Unauthorized("server has no signing secret configured")

    try:
        # Expiry is checked below against `now` so validation stays deterministic
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"verify_exp": False, "verify_sub": False, "verify_iat": False, "verify_nbf": False},
        )
    except jwt.InvalidSignatureError:
        raise Unauthorized("invalid signature")
    except jwt.PyJWTError:
        raise Unauthorized("malformed token")

    return _validate_claims(payload, time.time() if now is None else now)


def issue_token(secret: str, sub: str, ttl_seconds: Optional[int] = None, now: Optional[float] = None) -> str:
    """Mint an HS256 token for `sub`, optionally expiring after `ttl_seconds`."""
    if not secret:
        raise ValueError("A signing secret is required to issue tokens")
    if not sub:
        raise ValueError("Token subject must be non-empty")
    issued_at = int(time.time() if now is None else now)
    payload: dict[str, Any] = {"sub": sub, "iat": issued_at}
    if ttl_seconds is not None:
        payload["exp"] = issued_at + int(ttl_seconds)
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


async def require_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Claims:
    """FastAPI dependency gating every lifecycle route."""
    del credentials  # declared for the OpenAPI security scheme; header parsed below
    settings = request.app.state.settings
    try:
        claims = authorize(request.headers.get("authorization"), settings.jwt_secret)
    except Unauthorized as e:
        logger.info(f"Rejected request to {request.url.path}: {e.reason}")
        raise
    request.state.claims = claims
    return claims
