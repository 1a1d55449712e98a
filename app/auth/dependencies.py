import uuid

from fastapi import Depends, HTTPException, Request, status

from .service import decode_access_token


def get_optional_user_id_from_token(request: Request) -> uuid.UUID | None:
    """Extracts User ID from Authorization header if present, returns None otherwise."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None

    user_id_str = decode_access_token(token.strip())  # Returns user_id string or None
    if user_id_str:
        try:
            return uuid.UUID(user_id_str)
        except ValueError:
            return None  # Invalid UUID format in token
    return None


def get_required_user_id(
    user_id: uuid.UUID | None = Depends(get_optional_user_id_from_token),
) -> uuid.UUID:
    """Dependency that requires a valid user ID to be extracted from the token."""
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
