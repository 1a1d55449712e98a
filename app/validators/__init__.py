"""Credential validators, one per provider, selected through a registry."""

from collections.abc import Mapping
from typing import Any

import httpx

from app.core.config import ProviderConfig
from app.models.linked_account import Provider
from app.schemas.linked_account import AccountSnapshot

# Importing the provider modules registers their validators
from app.validators import bank, binance, deriv, manual, mpesa, mt5  # noqa: F401
from app.validators.base import (
    CredentialsModel,
    CredentialValidator,
    ValidatorRegistry,
    describe_validation_error,
    register_validator,
    registered_providers,
    resolve_provider,
    validator_class_for,
)


async def validate_credentials(
    provider: Provider | str,
    credentials: Mapping[str, Any],
    config: ProviderConfig,
    client: httpx.AsyncClient,
) -> AccountSnapshot:
    """One-shot validation: resolve, shape-check and validate raw credentials."""
    validator = ValidatorRegistry(config, client).get(provider)
    return await validator.validate(validator.parse_credentials(credentials))


__all__ = [
    "CredentialsModel",
    "CredentialValidator",
    "ValidatorRegistry",
    "describe_validation_error",
    "register_validator",
    "registered_providers",
    "resolve_provider",
    "validate_credentials",
    "validator_class_for",
]
