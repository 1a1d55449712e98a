from app.crud.base import CRUDBase
from app.crud.crud_linked_account import CRUDLinkedAccount, linked_account
from app.crud.crud_mpesa_callback import (
    CRUDMpesaCallbackReceipt,
    mpesa_callback_receipt,
)

__all__ = [
    "CRUDBase",
    # LinkedAccount
    "CRUDLinkedAccount",
    "linked_account",
    # M-Pesa callback ledger
    "CRUDMpesaCallbackReceipt",
    "mpesa_callback_receipt",
]
