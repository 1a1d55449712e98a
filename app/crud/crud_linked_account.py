import logging
import uuid

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.crud.base import CRUDBase
from app.models.linked_account import (
    TRADING_PROVIDERS,
    AccountStatus,
    LinkedAccount,
    Provider,
)

logger = logging.getLogger(__name__)


class CRUDLinkedAccount(CRUDBase[LinkedAccount]):
    async def aget_for_user(
        self, db: AsyncSession, *, user_id: uuid.UUID, account_id: uuid.UUID
    ) -> LinkedAccount | None:
        """Gets an account by id, only if it belongs to the user."""
        stmt = select(LinkedAccount).filter(
            LinkedAccount.id == account_id, LinkedAccount.user_id == user_id
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def aget_multi_by_owner(
        self, db: AsyncSession, *, user_id: uuid.UUID
    ) -> list[LinkedAccount]:
        stmt = (
            select(LinkedAccount)
            .filter(LinkedAccount.user_id == user_id)
            .order_by(LinkedAccount.linked_at.desc(), LinkedAccount.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def aget_by_identity(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID | None,
        provider: Provider,
        external_account_id: str | None,
    ) -> LinkedAccount | None:
        """Gets the account for one external identity (user, provider, external id)."""
        if external_account_id is None:
            return None
        stmt = select(LinkedAccount).filter(
            LinkedAccount.user_id == user_id,
            LinkedAccount.provider == provider,
            LinkedAccount.external_account_id == external_account_id,
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def acount_by_owner(self, db: AsyncSession, *, user_id: uuid.UUID | None) -> int:
        if user_id is None:
            return 0
        stmt = select(func.count(LinkedAccount.id)).filter(LinkedAccount.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one()

    async def aget_default(
        self, db: AsyncSession, *, user_id: uuid.UUID
    ) -> LinkedAccount | None:
        stmt = select(LinkedAccount).filter(
            LinkedAccount.user_id == user_id, LinkedAccount.is_default.is_(True)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def aclear_default(
        self, db: AsyncSession, *, user_id: uuid.UUID, keep_id: uuid.UUID | None = None
    ) -> None:
        stmt = (
            update(LinkedAccount)
            .where(LinkedAccount.user_id == user_id, LinkedAccount.is_default.is_(True))
            .values(is_default=False)
        )
        if keep_id is not None:
            stmt = stmt.where(LinkedAccount.id != keep_id)
        await db.execute(stmt)
        await db.flush()

    async def aget_active_trading_accounts(
        self, db: AsyncSession, *, user_id: uuid.UUID
    ) -> list[LinkedAccount]:
        stmt = select(LinkedAccount).filter(
            LinkedAccount.user_id == user_id,
            LinkedAccount.status == AccountStatus.ACTIVE,
            LinkedAccount.provider.in_(TRADING_PROVIDERS),
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def aget_users_with_active_trading_accounts(
        self, db: AsyncSession
    ) -> list[uuid.UUID]:
        stmt = (
            select(LinkedAccount.user_id)
            .filter(
                LinkedAccount.user_id.is_not(None),
                LinkedAccount.status == AccountStatus.ACTIVE,
                LinkedAccount.provider.in_(TRADING_PROVIDERS),
            )
            .distinct()
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def aget_mpesa_by_checkout(
        self,
        db: AsyncSession,
        *,
        checkout_request_id: str,
        phone_number: str | None = None,
    ) -> LinkedAccount | None:
        """M-Pesa account awaiting a given STK checkout, optionally pinned to a phone."""
        stmt = select(LinkedAccount).filter(
            LinkedAccount.provider == Provider.MPESA,
            LinkedAccount.stk_checkout_id == checkout_request_id,
        )
        if phone_number is not None:
            stmt = stmt.filter(LinkedAccount.phone_number == phone_number)
        result = await db.execute(stmt.order_by(LinkedAccount.linked_at.desc()))
        return result.scalars().first()


linked_account = CRUDLinkedAccount(LinkedAccount)
