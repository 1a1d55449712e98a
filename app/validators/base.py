import abc
import hashlib
import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.core.config import ProviderConfig
from app.core.exceptions import ErrorKind, ProviderError
from app.core.http import send_request
from app.models.linked_account import LinkedAccount, Provider
from app.schemas.linked_account import AccountSnapshot

logger = logging.getLogger(__name__)


class CredentialsModel(BaseModel):
    """Base for the per-provider credential payloads (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def credential_fingerprint(secret: str) -> str:
    """Stable, non-reversible identifier for a credential (used as external id)."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return f"****{api_key[-4:]}"
    return f"{api_key[:4]}...{api_key[-4:]}"


TWO_PLACES = Decimal("0.01")


def parse_amount(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Parses a provider amount into a non-negative 2-dp Decimal."""
    if value is None or value == "":
        return default
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not amount.is_finite():
        return default
    return max(amount, Decimal("0")).quantize(TWO_PLACES)


def describe_validation_error(exc: ValidationError) -> str:
    fields = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        if location and location not in fields:
            fields.append(location)
    if not fields:
        return "Invalid request payload"
    return f"Missing or invalid fields: {', '.join(fields)}"


class CredentialValidator(abc.ABC):
    """Validates raw credentials for one provider and normalizes the result.

    Validators never touch persistence; their only side effect is outbound
    HTTP through the shared client, always bounded by a timeout.
    """

    provider: ClassVar[Provider]
    credentials_model: ClassVar[type[CredentialsModel]]
    label: ClassVar[str] = "Provider"

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    def parse_credentials(self, payload: Mapping[str, Any]) -> CredentialsModel:
        """Shape-validates a raw payload, raising InvalidInput on missing or malformed fields."""
        try:
            return self.credentials_model.model_validate(dict(payload))
        except ValidationError as e:
            raise ProviderError(
                ErrorKind.INVALID_INPUT,
                describe_validation_error(e),
                diagnostic=str(e),
            ) from e

    @abc.abstractmethod
    async def validate(self, credentials: CredentialsModel) -> AccountSnapshot:
        """Checks the credentials against the provider and returns an account snapshot."""

    async def fetch_balance(self, account: LinkedAccount) -> Decimal:
        """Real balance path used by the synchronizer; providers without one fall back to simulation."""
        raise NotImplementedError(f"{self.label} has no balance API")

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float | None = None,
        **kwargs,
    ) -> httpx.Response:
        request_timeout = timeout if timeout is not None else self.config.timeout_seconds
        return await send_request(
            self.client, self.label, method, url, timeout=request_timeout, **kwargs
        )


_REGISTRY: dict[Provider, type[CredentialValidator]] = {}


def register_validator(provider: Provider):
    """Class decorator registering a validator implementation for a provider."""

    def decorator(cls: type[CredentialValidator]) -> type[CredentialValidator]:
        cls.provider = provider
        _REGISTRY[provider] = cls
        return cls

    return decorator


def resolve_provider(name: str | Provider | None) -> Provider:
    if isinstance(name, Provider):
        return name
    try:
        return Provider((name or "").strip().lower())
    except ValueError:
        raise ProviderError(
            ErrorKind.UNSUPPORTED_PROVIDER, f"Unsupported platform: {name}"
        ) from None


def validator_class_for(provider: Provider) -> type[CredentialValidator]:
    try:
        return _REGISTRY[provider]
    except KeyError:
        raise ProviderError(
            ErrorKind.UNSUPPORTED_PROVIDER, f"Unsupported platform: {provider.value}"
        ) from None


def registered_providers() -> list[Provider]:
    return list(_REGISTRY)


class ValidatorRegistry:
    """Builds and caches one validator per provider around a shared config and client."""

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client
        self._instances: dict[Provider, CredentialValidator] = {}

    def get(self, provider: Provider | str) -> CredentialValidator:
        provider = resolve_provider(provider)
        if provider not in self._instances:
            self._instances[provider] = validator_class_for(provider)(
                self.config, self.client
            )
        return self._instances[provider]
