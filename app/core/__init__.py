"""
Core application components: configuration, the error taxonomy, outbound
HTTP helpers and phone number handling.
"""

from .config import ProviderConfig, settings
from .exceptions import (
    APIException,
    ErrorKind,
    InvalidStatusTransition,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
)

__all__ = [
    # config
    "settings",
    "ProviderConfig",
    # exceptions
    "APIException",
    "ErrorKind",
    "ProviderError",
    "InvalidStatusTransition",
    "NotFoundError",
    "PermissionDeniedError",
]
