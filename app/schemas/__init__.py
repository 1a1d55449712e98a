"""Export Pydantic schemas for data validation and serialization."""

# Account schemas
from app.schemas.linked_account import (
    AccountMetadata,
    AccountSnapshot,
    AccountSummary,
    ApiResponse,
    BalanceData,
    BankLinkRequest,
    BulkSyncData,
    LinkedAccount,
    MpesaBalanceCheckRequest,
    MpesaLinkRequest,
    StatusUpdateRequest,
    TradingLinkRequest,
)

# Webhook schemas
from app.schemas.mpesa_callback import (
    CALLBACK_ACK,
    StkCallback,
    StkCallbackEnvelope,
    TransactionDetails,
)

__all__ = [
    # Account schemas
    "AccountMetadata",
    "AccountSnapshot",
    "AccountSummary",
    "ApiResponse",
    "BalanceData",
    "BankLinkRequest",
    "BulkSyncData",
    "LinkedAccount",
    "MpesaBalanceCheckRequest",
    "MpesaLinkRequest",
    "StatusUpdateRequest",
    "TradingLinkRequest",
    # Webhook schemas
    "CALLBACK_ACK",
    "StkCallback",
    "StkCallbackEnvelope",
    "TransactionDetails",
]
