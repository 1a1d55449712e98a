import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Provider(str, enum.Enum):
    MPESA = "mpesa"
    BANK = "bank"
    DERIV = "deriv"
    BINANCE = "binance"
    MT5 = "mt5"
    ETORO = "etoro"
    INTERACTIVE_BROKERS = "interactive_brokers"


TRADING_PROVIDERS = frozenset(
    {
        Provider.DERIV,
        Provider.BINANCE,
        Provider.MT5,
        Provider.ETORO,
        Provider.INTERACTIVE_BROKERS,
    }
)

DEFAULT_CURRENCY = {
    Provider.MPESA: "KES",
    Provider.BANK: "KES",
}


def default_currency_for(provider: Provider) -> str:
    return DEFAULT_CURRENCY.get(provider, "USD")


class AccountStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    NEEDS_VERIFICATION = "needs_verification"
    INACTIVE = "inactive"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class LinkedAccount(Base):
    __tablename__ = "linked_accounts"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider",
            "external_account_id",
            name="uq_linked_accounts_user_provider_external_id",
        ),
        # At most one default account per user
        Index(
            "uq_linked_accounts_user_default",
            "user_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
        CheckConstraint("balance >= 0", name="ck_linked_accounts_balance_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Nullable only for webhook-provisioned accounts with no resolvable owner
    user_id = Column(Uuid, nullable=True, index=True)
    provider = Column(
        SQLAlchemyEnum(
            Provider, name="linked_account_provider", values_callable=_enum_values
        ),
        nullable=False,
        index=True,
    )
    display_name = Column(String(255), nullable=False)
    masked_number = Column(String(32), nullable=False)
    balance = Column(Numeric(18, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False)
    status = Column(
        SQLAlchemyEnum(
            AccountStatus, name="linked_account_status", values_callable=_enum_values
        ),
        nullable=False,
        default=AccountStatus.PENDING,
        index=True,
    )
    is_default = Column(Boolean, nullable=False, default=False)
    linked_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Known metadata fields
    platform = Column(String(50))
    external_account_id = Column(String(255), index=True)
    masked_api_key = Column(String(32))
    last_synced_at = Column(DateTime(timezone=True))
    has_balance_access = Column(Boolean, nullable=False, default=False)
    requires_manual_verification = Column(Boolean, nullable=False, default=False)
    stk_checkout_id = Column(String(100), index=True)
    mpesa_receipt_number = Column(String(50))
    validated_with_real_api = Column(Boolean, nullable=False, default=False)
    phone_number = Column(String(20), index=True)
    failure_reason = Column(Text)
    last_transaction = Column(JSONType)

    # Open extension map; provider-specific data only, never read for invariants
    extra = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return (
            f"<LinkedAccount(id={self.id}, user_id={self.user_id}, "
            f"provider='{getattr(self.provider, 'value', self.provider)}', "
            f"status='{getattr(self.status, 'value', self.status)}')>"
        )
