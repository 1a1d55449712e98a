"""Balance Synchronizer.

Refreshes persisted balances either for one account or for every active
trading account of a user. Once the account lookup succeeds a sync never fails
visibly: without system credentials, or when the provider call fails, a
simulated balance is written instead, and `last_synced_at` is always stamped.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app import crud
from app.core.config import settings
from app.core.exceptions import NotFoundError, PermissionDeniedError, ProviderError
from app.database import session_scope
from app.models.linked_account import LinkedAccount, Provider
from app.validators import ValidatorRegistry

logger = logging.getLogger(__name__)

SIMULATED_BALANCES: tuple[Decimal, ...] = tuple(
    Decimal(value) for value in (0, 500, 1000, 2500, 5000, 10000, 25000, 50000)
)

MESSAGE_REAL = "Balance updated successfully"
MESSAGE_FALLBACK = "Could not fetch live balance. Using simulated balance."
MESSAGE_SIMULATED = "Simulated balance (API credentials not configured)"


@dataclass
class SyncResult:
    account_id: uuid.UUID
    balance: Decimal
    currency: str
    updated_at: datetime
    is_real_balance: bool
    message: str


@dataclass
class BulkSyncResult:
    updated: int
    total: int


def simulated_balance(rng: random.Random | None = None) -> Decimal:
    return (rng or random).choice(SIMULATED_BALANCES)


async def resolve_balance(
    validators: ValidatorRegistry,
    account: LinkedAccount,
    rng: random.Random | None = None,
) -> tuple[Decimal, bool, str]:
    """Real balance when possible, simulated otherwise: (balance, is_real, message)."""
    provider = Provider(account.provider)
    if not validators.config.has_credentials(provider):
        return simulated_balance(rng), False, MESSAGE_SIMULATED

    try:
        balance = await validators.get(provider).fetch_balance(account)
        return balance, True, MESSAGE_REAL
    except NotImplementedError:
        return simulated_balance(rng), False, MESSAGE_SIMULATED
    except ProviderError as e:
        logger.warning(
            f"Live {provider.value} balance fetch failed for account {account.id}: {e.kind.value}",
            extra={"props": {"account_id": str(account.id), "diagnostic": e.diagnostic}},
        )
    except Exception as e:
        logger.error(
            f"Unexpected error fetching {provider.value} balance for account {account.id}: {e}",
            exc_info=True,
        )
    return simulated_balance(rng), False, MESSAGE_FALLBACK


def apply_balance(
    account: LinkedAccount, balance: Decimal, is_real: bool, now: datetime
) -> None:
    account.balance = balance
    account.last_synced_at = now
    account.extra = {
        **(account.extra or {}),
        "balanceUpdateMethod": "api" if is_real else "simulated",
    }


async def sync_account(
    db: AsyncSession,
    validators: ValidatorRegistry,
    user_id: uuid.UUID,
    account_id: uuid.UUID,
    *,
    rng: random.Random | None = None,
) -> SyncResult:
    """Refreshes one account's balance. NotFound / PermissionDenied are the only failures."""
    account = await crud.linked_account.aget_for_user(
        db, user_id=user_id, account_id=account_id
    )
    if account is None:
        raise NotFoundError("Account not found")
    return await _sync_loaded_account(db, validators, account, rng=rng)


async def _sync_loaded_account(
    db: AsyncSession,
    validators: ValidatorRegistry,
    account: LinkedAccount,
    *,
    rng: random.Random | None = None,
) -> SyncResult:
    if not account.has_balance_access:
        raise PermissionDeniedError("This account does not have real balance access")

    balance, is_real, message = await resolve_balance(validators, account, rng)
    now = datetime.now(UTC)
    apply_balance(account, balance, is_real, now)
    db.add(account)
    await db.flush()

    logger.info(
        f"Synced account {account.id}: {balance} {account.currency} ({'real' if is_real else 'simulated'})",
        extra={"props": {"account_id": str(account.id)}},
    )
    return SyncResult(
        account_id=account.id,
        balance=balance,
        currency=account.currency,
        updated_at=now,
        is_real_balance=is_real,
        message=message,
    )


async def check_mpesa_balance(
    db: AsyncSession,
    validators: ValidatorRegistry,
    user_id: uuid.UUID,
    account_id: uuid.UUID,
    *,
    rng: random.Random | None = None,
) -> SyncResult:
    """Balance check for one of the user's M-Pesa accounts."""
    account = await crud.linked_account.aget_for_user(
        db, user_id=user_id, account_id=account_id
    )
    if account is None or Provider(account.provider) != Provider.MPESA:
        raise NotFoundError("Account not found")
    return await _sync_loaded_account(db, validators, account, rng=rng)


async def sync_all_trading_balances(
    session_factory: async_sessionmaker[AsyncSession],
    validators: ValidatorRegistry,
    user_id: uuid.UUID,
    *,
    concurrency: int | None = None,
    rng: random.Random | None = None,
) -> BulkSyncResult:
    """Refreshes every active trading account of a user.

    Each account is fetched and written in its own session, at most
    `concurrency` at a time. One account failing does not stop the others;
    failures are logged and left out of the count.
    """
    async with session_scope(session_factory) as db:
        accounts = await crud.linked_account.aget_active_trading_accounts(
            db, user_id=user_id
        )
        account_ids = [account.id for account in accounts]

    if not account_ids:
        return BulkSyncResult(updated=0, total=0)

    semaphore = asyncio.Semaphore(concurrency or settings.BULK_SYNC_CONCURRENCY)

    async def refresh(account_id: uuid.UUID) -> bool:
        async with semaphore:
            async with session_scope(session_factory) as db:
                account = await crud.linked_account.aget(db, account_id)
                if account is None:
                    return False
                balance, is_real, _ = await resolve_balance(validators, account, rng)
                apply_balance(account, balance, is_real, datetime.now(UTC))
        return True

    results = await asyncio.gather(
        *(refresh(account_id) for account_id in account_ids), return_exceptions=True
    )

    updated = 0
    for account_id, outcome in zip(account_ids, results):
        if isinstance(outcome, BaseException):
            logger.error(
                f"Bulk sync failed for account {account_id}: {outcome!r}",
                extra={"props": {"account_id": str(account_id), "user_id": str(user_id)}},
            )
        elif outcome:
            updated += 1

    logger.info(
        f"Bulk sync for user {user_id}: {updated}/{len(account_ids)} accounts updated",
        extra={"props": {"user_id": str(user_id)}},
    )
    return BulkSyncResult(updated=updated, total=len(account_ids))
