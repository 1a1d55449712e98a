"""Daraja STK push callback envelope.

Safaricom posts `{"Body": {"stkCallback": {...}}}` with PascalCase keys; the
models keep the wire names as aliases.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CallbackItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class CallbackMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: str | None = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str | None = Field(default=None, alias="ResultDesc")
    callback_metadata: CallbackMetadata | None = Field(
        default=None, alias="CallbackMetadata"
    )

    def item(self, name: str) -> Any:
        if not self.callback_metadata:
            return None
        for entry in self.callback_metadata.items:
            if entry.name == name:
                return entry.value
        return None


class StkCallbackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stk_callback: StkCallback = Field(alias="stkCallback")


class StkCallbackEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    body: StkCallbackBody = Field(alias="Body")


class TransactionDetails(BaseModel):
    amount: Decimal = Decimal("0")
    phone_number: str = ""
    receipt_number: str = ""
    transaction_date: str = ""

    @classmethod
    def from_callback(cls, callback: StkCallback) -> "TransactionDetails":
        raw_amount = callback.item("Amount")
        try:
            amount = Decimal(str(raw_amount)) if raw_amount is not None else Decimal("0")
        except InvalidOperation:
            amount = Decimal("0")
        if not amount.is_finite():
            amount = Decimal("0")
        return cls(
            amount=amount,
            phone_number=_as_text(callback.item("PhoneNumber")),
            receipt_number=_as_text(callback.item("MpesaReceiptNumber")),
            transaction_date=_as_text(callback.item("TransactionDate")),
        )


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Success"}
