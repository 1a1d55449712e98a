import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.linked_account import AccountStatus, LinkedAccount as LinkedAccountModel, Provider

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """Base for the JSON surface consumed by the native app (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccountMetadata(CamelModel):
    """Known metadata fields plus an open extension map.

    Invariant-bearing logic only ever reads the typed fields; `extra` carries
    provider specific details for display.
    """

    platform: str | None = None
    external_account_id: str | None = None
    masked_api_key: str | None = None
    last_synced_at: datetime | None = None
    has_balance_access: bool = False
    requires_manual_verification: bool = False
    stk_checkout_id: str | None = None
    mpesa_receipt_number: str | None = None
    validated_with_real_api: bool = False
    phone_number: str | None = None
    failure_reason: str | None = None
    last_transaction: dict[str, Any] | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


# Metadata fields persisted as columns on LinkedAccount
METADATA_COLUMNS = tuple(name for name in AccountMetadata.model_fields if name != "extra")


class AccountSnapshot(CamelModel):
    """Normalized account state produced by a credential validator, before persistence."""

    display_name: str
    masked_number: str
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE
    metadata: AccountMetadata = Field(default_factory=AccountMetadata)


# Pydantic schema for reading a LinkedAccount
class LinkedAccount(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    provider: Provider
    display_name: str
    masked_number: str
    balance: Decimal
    currency: str
    status: AccountStatus
    is_default: bool
    linked_at: datetime | None = None
    metadata: AccountMetadata

    @classmethod
    def from_model(cls, account: LinkedAccountModel) -> "LinkedAccount":
        metadata = AccountMetadata(
            **{name: getattr(account, name) for name in METADATA_COLUMNS},
            extra=dict(account.extra or {}),
        )
        return cls(
            id=account.id,
            user_id=account.user_id,
            provider=account.provider,
            display_name=account.display_name,
            masked_number=account.masked_number,
            balance=account.balance,
            currency=account.currency,
            status=account.status,
            is_default=account.is_default,
            linked_at=account.linked_at,
            metadata=metadata,
        )


# --- Request bodies ---
# Fields are optional here on purpose: per-provider shape validation happens in
# the linking service so every failure lands in the same error envelope.


class TradingLinkRequest(CamelModel):
    platform: str | None = None
    api_key: str | None = None
    api_secret: str | None = None
    account_id: str | None = None
    passphrase: str | None = None
    broker: str | None = None
    login: int | str | None = None
    password: str | None = None
    server: str | None = None
    investor_password: str | None = None


class MpesaLinkRequest(CamelModel):
    phone_number: str | None = None
    # Accepted for compatibility with older app builds; never used for authorization
    pin: str | None = None


class BankLinkRequest(CamelModel):
    bank_name: str | None = None
    account_number: str | None = None
    account_name: str | None = None
    routing_number: str | None = None


class MpesaBalanceCheckRequest(CamelModel):
    account_id: uuid.UUID
    phone_number: str | None = None


class StatusUpdateRequest(CamelModel):
    status: AccountStatus


# --- Response bodies ---


class ApiResponse(CamelModel, Generic[DataT]):
    success: bool
    message: str
    data: DataT | None = None


class BalanceData(CamelModel):
    account_id: uuid.UUID
    balance: Decimal
    currency: str
    updated_at: datetime
    is_real_balance: bool


class BulkSyncData(CamelModel):
    updated: int
    total: int


class ProviderTotal(CamelModel):
    count: int = 0
    balance: Decimal = Decimal("0")


class AccountSummary(CamelModel):
    total_accounts: int
    balance_by_currency: dict[str, Decimal]
    by_provider: dict[str, ProviderTotal]
    default_account_id: uuid.UUID | None = None
