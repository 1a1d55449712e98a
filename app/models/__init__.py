"""Export database models for use throughout the application."""

# Account models
from app.models.linked_account import (
    TRADING_PROVIDERS,
    AccountStatus,
    LinkedAccount,
    Provider,
    default_currency_for,
)

# Webhook models
from app.models.mpesa_callback import MpesaCallbackReceipt

__all__ = [
    # Account models
    "LinkedAccount",
    "Provider",
    "AccountStatus",
    "TRADING_PROVIDERS",
    "default_currency_for",
    # Webhook models
    "MpesaCallbackReceipt",
]
