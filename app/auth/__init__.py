# Import from dependencies
from .dependencies import (
    get_optional_user_id_from_token,
    get_required_user_id,
)

# Import from service
from .service import (
    create_access_token,
    decode_access_token,
)

__all__ = [
    # Dependencies
    "get_optional_user_id_from_token",
    "get_required_user_id",
    # Service
    "create_access_token",
    "decode_access_token",
]
