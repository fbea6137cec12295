from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt

from .config import TOKEN_TTL_HOURS
from .errors import AuthError
from .models import TokenClaims, User

ALGORITHM = "HS256"


def issue_token(user: User, secret: str, now: datetime | None = None) -> str:
    issued_at = now or datetime.now(UTC)
    claims = {
        "user_id": user.id,
        "phone": user.phone,
        "role": user.role,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=TOKEN_TTL_HOURS),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str) -> TokenClaims:
    try:
        decoded = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["exp"]})
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired", code="TOKEN_EXPIRED") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc
    try:
        return TokenClaims.model_validate(decoded)
    except ValueError as exc:
        raise AuthError("Invalid token") from exc
