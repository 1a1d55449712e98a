"""Webhook Reconciler for Daraja STK push callbacks.

Safaricom retries any callback that is not acknowledged, so nothing here is
allowed to surface an error to the HTTP layer; every outcome is logged and
reported as a `CallbackOutcome`.
"""

import enum
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.exceptions import InvalidStatusTransition
from app.core.phone import mask_identifier, normalize_phone_number
from app.models.linked_account import AccountStatus, LinkedAccount, Provider
from app.schemas.mpesa_callback import StkCallback, StkCallbackEnvelope, TransactionDetails
from app.services.lifecycle import transition

logger = logging.getLogger(__name__)


class CallbackOutcome(str, enum.Enum):
    CREDITED = "credited"
    PROVISIONED = "provisioned"
    MARKED_FAILED = "marked_failed"
    NO_MATCH = "no_match"
    DUPLICATE = "duplicate"
    INVALID_PHONE = "invalid_phone"
    MALFORMED = "malformed"


def parse_callback(payload: Mapping[str, Any] | None) -> StkCallback | None:
    try:
        return StkCallbackEnvelope.model_validate(payload or {}).body.stk_callback
    except ValidationError as e:
        logger.warning(f"Malformed M-Pesa callback ignored: {e.error_count()} validation errors")
        return None


def last_transaction_record(details: TransactionDetails) -> dict[str, Any]:
    return {
        "amount": float(details.amount),
        "receiptNumber": details.receipt_number,
        "date": details.transaction_date,
        "type": "credit" if details.amount > 0 else "debit",
    }


async def process_stk_callback(
    db: AsyncSession, payload: Mapping[str, Any] | None
) -> CallbackOutcome:
    """Applies one STK callback to the matching account, at most once per (checkout, result)."""
    callback = parse_callback(payload)
    if callback is None:
        return CallbackOutcome.MALFORMED

    checkout_id = callback.checkout_request_id
    log_props = {"checkout_request_id": checkout_id, "result_code": callback.result_code}
    logger.info(
        f"M-Pesa callback received: {checkout_id} (ResultCode {callback.result_code})",
        extra={"props": log_props},
    )

    seen = await crud.mpesa_callback_receipt.aget_by_checkout_and_result(
        db, checkout_request_id=checkout_id, result_code=callback.result_code
    )
    if seen is not None:
        logger.info(
            f"Duplicate M-Pesa callback for {checkout_id} ignored",
            extra={"props": log_props},
        )
        return CallbackOutcome.DUPLICATE

    if callback.result_code == 0:
        outcome, account = await _apply_success(db, callback)
    else:
        outcome, account = await _apply_failure(db, callback)

    if outcome is CallbackOutcome.INVALID_PHONE:
        return outcome

    details = TransactionDetails.from_callback(callback)
    await crud.mpesa_callback_receipt.acreate(
        db,
        obj_in={
            "checkout_request_id": checkout_id,
            "merchant_request_id": callback.merchant_request_id,
            "result_code": callback.result_code,
            "result_description": callback.result_desc,
            "receipt_number": details.receipt_number or None,
            "linked_account_id": account.id if account is not None else None,
        },
    )
    logger.info(f"M-Pesa callback {checkout_id} processed: {outcome.value}", extra={"props": log_props})
    return outcome


async def _apply_success(
    db: AsyncSession, callback: StkCallback
) -> tuple[CallbackOutcome, LinkedAccount | None]:
    details = TransactionDetails.from_callback(callback)
    phone = normalize_phone_number(details.phone_number)
    if phone is None:
        logger.warning(
            f"M-Pesa callback {callback.checkout_request_id} has an invalid phone number; nothing updated"
        )
        return CallbackOutcome.INVALID_PHONE, None

    now = datetime.now(UTC)
    account = await crud.linked_account.aget_mpesa_by_checkout(
        db, checkout_request_id=callback.checkout_request_id, phone_number=phone
    )

    if account is not None:
        old_balance = Decimal(account.balance or 0)
        # Debits larger than the balance clamp at zero
        new_balance = max(old_balance + details.amount, Decimal("0"))
        transition(account, AccountStatus.ACTIVE)
        account.balance = new_balance
        account.last_transaction = last_transaction_record(details)
        account.last_synced_at = now
        account.mpesa_receipt_number = details.receipt_number or account.mpesa_receipt_number
        account.extra = {**(account.extra or {}), "callbackReceived": True, "verifiedAt": now.isoformat()}
        db.add(account)
        await db.flush()
        logger.info(
            f"M-Pesa account {account.id} credited: {old_balance} -> {new_balance}",
            extra={"props": {"account_id": str(account.id)}},
        )
        return CallbackOutcome.CREDITED, account

    logger.warning(
        f"No M-Pesa account awaiting {callback.checkout_request_id} for {mask_identifier(phone)}; provisioning one"
    )
    account = LinkedAccount(
        user_id=None,
        provider=Provider.MPESA,
        display_name=f"M-Pesa ({phone[-4:]})",
        masked_number=mask_identifier(phone),
        balance=max(details.amount, Decimal("0")),
        currency="KES",
        status=AccountStatus.ACTIVE,
        is_default=False,
        linked_at=now,
        platform=Provider.MPESA.value,
        external_account_id=phone,
        phone_number=phone,
        has_balance_access=True,
        validated_with_real_api=True,
        stk_checkout_id=callback.checkout_request_id,
        mpesa_receipt_number=details.receipt_number or None,
        last_synced_at=now,
        last_transaction=last_transaction_record(details),
        extra={"verifiedAt": now.isoformat(), "provisionedByCallback": True},
    )
    db.add(account)
    await db.flush()
    return CallbackOutcome.PROVISIONED, account


async def _apply_failure(
    db: AsyncSession, callback: StkCallback
) -> tuple[CallbackOutcome, LinkedAccount | None]:
    logger.warning(
        f"M-Pesa transaction failed: {callback.result_code} {callback.result_desc}",
        extra={"props": {"checkout_request_id": callback.checkout_request_id}},
    )
    account = await crud.linked_account.aget_mpesa_by_checkout(
        db, checkout_request_id=callback.checkout_request_id
    )
    if account is None:
        return CallbackOutcome.NO_MATCH, None

    try:
        transition(account, AccountStatus.NEEDS_VERIFICATION)
    except InvalidStatusTransition as e:
        logger.warning(f"Account {account.id} status left unchanged: {e.message}")
    account.failure_reason = callback.result_desc
    account.extra = {**(account.extra or {}), "lastCallbackError": callback.result_desc}
    db.add(account)
    await db.flush()
    return CallbackOutcome.MARKED_FAILED, account
