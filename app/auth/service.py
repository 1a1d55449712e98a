import logging
from datetime import UTC, datetime, timedelta

import jwt  # PyJWT

from app.core.config import settings

logger = logging.getLogger(__name__)


# --- JWT Token Handling ---
# Tokens are issued by the identity service; create_access_token exists for
# service-to-service calls and load tests.
def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )
    return encoded_jwt


def decode_access_token(token: str) -> str | None:  # Return user_id (subject) or None
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
        user_id: str | None = payload.get("sub")
        if user_id is None:
            logger.debug("Access token has no subject")
            return None
        return user_id
    except jwt.ExpiredSignatureError:
        logger.debug("Access token expired")
        return None
    except jwt.InvalidTokenError:
        logger.debug("Access token invalid")
        return None
