import logging
import uuid
from collections import defaultdict
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app import crud
from app.core.exceptions import InvalidStatusTransition, NotFoundError, ProviderError
from app.models.linked_account import (
    AccountStatus,
    LinkedAccount,
    Provider,
    default_currency_for,
)
from app.schemas.linked_account import (
    METADATA_COLUMNS,
    AccountSnapshot,
    AccountSummary,
    ProviderTotal,
)
from app.services.lifecycle import can_transition, transition
from app.validators import ValidatorRegistry

logger = logging.getLogger(__name__)

USER_SETTABLE_STATUSES = frozenset({AccountStatus.ACTIVE, AccountStatus.INACTIVE})


def build_account(
    user_id: uuid.UUID | None,
    provider: Provider,
    snapshot: AccountSnapshot,
    *,
    is_default: bool,
    now: datetime | None = None,
) -> LinkedAccount:
    """Turns a validator snapshot into an unsaved LinkedAccount row."""
    now = now or datetime.now(UTC)
    metadata = snapshot.metadata
    columns = {name: getattr(metadata, name) for name in METADATA_COLUMNS}
    columns["platform"] = columns["platform"] or provider.value
    columns["last_synced_at"] = now
    return LinkedAccount(
        user_id=user_id,
        provider=provider,
        display_name=snapshot.display_name,
        masked_number=snapshot.masked_number,
        balance=snapshot.balance,
        currency=snapshot.currency or default_currency_for(provider),
        status=snapshot.status,
        is_default=is_default,
        linked_at=now,
        extra=dict(metadata.extra),
        **columns,
    )


async def _insert(db: AsyncSession, account: LinkedAccount) -> LinkedAccount:
    db.add(account)
    await db.flush()
    await db.refresh(account)
    return account


async def _refresh_verification(
    db: AsyncSession, account: LinkedAccount, snapshot: AccountSnapshot
) -> LinkedAccount:
    """Points an already-linked account at the verification push just sent.

    The callback for that push is matched on its CheckoutRequestID, so the
    stored id must follow the latest push.
    """
    checkout_id = snapshot.metadata.stk_checkout_id
    if not checkout_id or checkout_id == account.stk_checkout_id:
        return account
    updates: dict[str, Any] = {"stk_checkout_id": checkout_id}
    if can_transition(AccountStatus(account.status), snapshot.status):
        updates["status"] = snapshot.status
    logger.info(
        f"Account {account.id} awaiting verification push {checkout_id}",
        extra={"props": {"account_id": str(account.id)}},
    )
    return await crud.linked_account.aupdate(db, db_obj=account, obj_in=updates)


async def link_account(
    db: AsyncSession,
    validators: ValidatorRegistry,
    user_id: uuid.UUID,
    provider: Provider | str,
    payload: Mapping[str, Any],
) -> tuple[LinkedAccount, bool]:
    """Validates credentials with the provider and persists the linked account.

    Returns the account and whether it was newly created. Linking an external
    identity the user already has returns the existing row unchanged.
    Nothing is written when validation fails.
    """
    validator = validators.get(provider)
    provider = validator.provider
    log_props = {"user_id": str(user_id), "provider": provider.value}

    credentials = validator.parse_credentials(payload)
    try:
        snapshot = await validator.validate(credentials)
    except ProviderError as e:
        logger.warning(
            f"{validator.label} validation failed ({e.kind.value}): {e.message}",
            extra={"props": {**log_props, "diagnostic": e.diagnostic}},
        )
        raise

    external_id = snapshot.metadata.external_account_id
    existing = await crud.linked_account.aget_by_identity(
        db, user_id=user_id, provider=provider, external_account_id=external_id
    )
    if existing is not None:
        logger.info(
            f"{validator.label} account already linked, returning existing record {existing.id}",
            extra={"props": log_props},
        )
        return await _refresh_verification(db, existing, snapshot), False

    is_first = await crud.linked_account.acount_by_owner(db, user_id=user_id) == 0
    account = build_account(user_id, provider, snapshot, is_default=is_first)
    try:
        account = await _insert(db, account)
    except IntegrityError:
        # Lost a race with a concurrent link for the same user
        await db.rollback()
        winner = await crud.linked_account.aget_by_identity(
            db, user_id=user_id, provider=provider, external_account_id=external_id
        )
        if winner is not None:
            logger.info(
                f"Concurrent link of the same {validator.label} account, returning {winner.id}",
                extra={"props": log_props},
            )
            return winner, False
        account = await _insert(
            db, build_account(user_id, provider, snapshot, is_default=False)
        )

    logger.info(
        f"Linked {validator.label} account {account.id} (status: {account.status.value}, default: {account.is_default})",
        extra={"props": log_props},
    )
    return account, True


async def list_accounts(db: AsyncSession, user_id: uuid.UUID) -> list[LinkedAccount]:
    return await crud.linked_account.aget_multi_by_owner(db, user_id=user_id)


async def set_default_account(
    db: AsyncSession, user_id: uuid.UUID, account_id: uuid.UUID
) -> LinkedAccount:
    """Makes one of the user's accounts the default, clearing any other."""
    account = await crud.linked_account.aget_for_user(
        db, user_id=user_id, account_id=account_id
    )
    if account is None:
        raise NotFoundError("Account not found")
    if account.is_default:
        return account

    await crud.linked_account.aclear_default(db, user_id=user_id, keep_id=account.id)
    account = await crud.linked_account.aupdate(
        db, db_obj=account, obj_in={"is_default": True}
    )
    logger.info(
        f"Default account for user {user_id} set to {account.id}",
        extra={"props": {"user_id": str(user_id)}},
    )
    return account


async def set_account_status(
    db: AsyncSession, user_id: uuid.UUID, account_id: uuid.UUID, status: AccountStatus
) -> LinkedAccount:
    """Manual active/inactive toggle. Verification states are left to the providers."""
    account = await crud.linked_account.aget_for_user(
        db, user_id=user_id, account_id=account_id
    )
    if account is None:
        raise NotFoundError("Account not found")
    current = AccountStatus(account.status)
    if current not in USER_SETTABLE_STATUSES or status not in USER_SETTABLE_STATUSES:
        raise InvalidStatusTransition(current.value, status.value)

    transition(account, status)
    db.add(account)
    await db.flush()
    await db.refresh(account)
    return account


def summarize_accounts(accounts: list[LinkedAccount]) -> AccountSummary:
    by_currency: dict[str, Decimal] = defaultdict(Decimal)
    by_provider: dict[str, ProviderTotal] = {}
    default_id = None
    for account in accounts:
        balance = Decimal(account.balance or 0)
        by_currency[account.currency] += balance
        key = Provider(account.provider).value
        total = by_provider.setdefault(key, ProviderTotal())
        total.count += 1
        total.balance += balance
        if account.is_default:
            default_id = account.id
    return AccountSummary(
        total_accounts=len(accounts),
        balance_by_currency=dict(by_currency),
        by_provider=by_provider,
        default_account_id=default_id,
    )


async def get_summary(db: AsyncSession, user_id: uuid.UUID) -> AccountSummary:
    return summarize_accounts(await list_accounts(db, user_id))
