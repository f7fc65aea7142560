"""
nova_session.backend.tokens

Access-token helpers.

Responsibilities:
- Read registered claims (sub/email/exp) from provider-issued JWTs.
- Decide when an access token is close enough to expiry to refresh.

Note:
- Signatures are verified by the backend on every call; the client only reads claims
  to schedule refreshes, so decoding skips signature verification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from jwt import InvalidTokenError

from nova_session.errors import UnknownError


@dataclass(frozen=True, slots=True)
class TokenClaims:
    subject: str | None
    email: str | None
    expires_at: float | None
    role: str | None = None


def read_claims(token: str) -> TokenClaims:
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except InvalidTokenError as e:
        raise UnknownError("Malformed access token") from e

    exp = payload.get("exp")
    return TokenClaims(
        subject=payload.get("sub"),
        email=payload.get("email"),
        expires_at=float(exp) if isinstance(exp, (int, float)) else None,
        role=payload.get("role"),
    )


def expires_soon(expires_at: float | None, *, now: float, leeway: float = 60.0) -> bool:
    if expires_at is None:
        return False
    return now >= expires_at - leeway


# --- Module Notes -----------------------------------------------------------
# A token without `exp` is treated as non-expiring; the backend still rejects it if stale.
