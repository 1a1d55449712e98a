"""Main application package for the Payvex accounts service."""

# Database components
from app.database import (
    AsyncSessionLocal,
    Base,
    get_async_db,
    get_session_factory,
    session_scope,
)

# Logging setup
from app.logging_config import (
    JsonFormatter,
    PIIMaskingFilter,
    setup_logging,
)

# For convenient access to common subpackages
from app import (
    auth,
    core,
    crud,
    models,
    schemas,
)

__all__ = [
    # Database components
    "Base",
    "get_async_db",
    "get_session_factory",
    "session_scope",
    "AsyncSessionLocal",
    # Logging setup
    "setup_logging",
    "JsonFormatter",
    "PIIMaskingFilter",
    # Subpackages
    "models",
    "schemas",
    "crud",
    "auth",
    "core",
]
