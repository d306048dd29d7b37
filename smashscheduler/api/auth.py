from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any, Optional

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.http import HttpRequest
from ninja.security import HttpBearer

User = get_user_model()


def _secret_key() -> str:
    # Use JWT_SECRET_KEY from settings if available, otherwise fallback to SECRET_KEY
    return getattr(settings, "JWT_SECRET_KEY", None) or settings.SECRET_KEY


def _algorithm() -> str:
    return getattr(settings, "JWT_ALGORITHM", "HS256")


def create_access_token_payload(user) -> dict[str, Any]:
    """Create the payload for the JWT access token."""
    now = datetime.now(timezone.utc)
    access_token_lifetime = getattr(settings, "JWT_ACCESS_TOKEN_LIFETIME", 3600)

    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(seconds=access_token_lifetime),
        "token_type": "access",
    }


def create_access_token(user) -> str:
    """Create a JWT access token for the user."""
    return jwt.encode(create_access_token_payload(user), _secret_key(), algorithm=_algorithm())


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is expired, malformed or badly signed
    """
    return jwt.decode(token, _secret_key(), algorithms=[_algorithm()])


class JWTAuth(HttpBearer):
    def authenticate(self, request: HttpRequest, token: str) -> Optional[User]:
        try:
            payload = verify_token(token)
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        if payload.get("token_type", "access") != "access":
            return None

        user_id = payload.get("user_id")
        if not user_id:
            return None

        user = User.objects.filter(id=user_id, is_active=True).first()
        if user is not None:
            # Service code checks request.user like the session-authenticated views
            request.user = user
        return user
