import logging
import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth import get_required_user_id
from app.core.exceptions import ErrorKind, ProviderError
from app.core.rate_limit import LINK_RATE_LIMIT, SYNC_RATE_LIMIT, limiter
from app.database import get_async_db, get_session_factory
from app.models.linked_account import TRADING_PROVIDERS, LinkedAccount, Provider
from app.schemas.linked_account import (
    AccountSummary,
    ApiResponse,
    BalanceData,
    BankLinkRequest,
    BulkSyncData,
    LinkedAccount as LinkedAccountSchema,
    MpesaLinkRequest,
    StatusUpdateRequest,
    TradingLinkRequest,
)
from app.services import balance_sync, linking_service
from app.validators import ValidatorRegistry, resolve_provider

from .dependencies import get_validators

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Accounts"])


def _link_response(
    account: LinkedAccount, created: bool, label: str
) -> ApiResponse[LinkedAccountSchema]:
    message = (
        f"{label} account linked successfully"
        if created
        else f"{label} account is already linked"
    )
    return ApiResponse[LinkedAccountSchema](
        success=True, message=message, data=LinkedAccountSchema.from_model(account)
    )


async def _link(
    db: AsyncSession,
    validators: ValidatorRegistry,
    user_id: uuid.UUID,
    provider: Provider,
    payload: dict,
) -> ApiResponse[LinkedAccountSchema]:
    account, created = await linking_service.link_account(
        db, validators, user_id, provider, payload
    )
    return _link_response(account, created, validators.get(provider).label)


# --- Link endpoints ---


@router.post("/link-trading-account", response_model=ApiResponse[LinkedAccountSchema])
@limiter.limit(LINK_RATE_LIMIT)
async def link_trading_account(
    request: Request,
    body: TradingLinkRequest,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
    validators: ValidatorRegistry = Depends(get_validators),
):
    if not body.platform:
        raise ProviderError(ErrorKind.INVALID_INPUT, "Platform is required")
    provider = resolve_provider(body.platform)
    if provider not in TRADING_PROVIDERS:
        raise ProviderError(
            ErrorKind.UNSUPPORTED_PROVIDER, f"Unsupported platform: {body.platform}"
        )
    payload = body.model_dump(exclude_none=True, exclude={"platform"})
    return await _link(db, validators, user_id, provider, payload)


@router.post("/link-mpesa-account", response_model=ApiResponse[LinkedAccountSchema])
@limiter.limit(LINK_RATE_LIMIT)
async def link_mpesa_account(
    request: Request,
    body: MpesaLinkRequest,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
    validators: ValidatorRegistry = Depends(get_validators),
):
    return await _link(
        db, validators, user_id, Provider.MPESA, body.model_dump(exclude_none=True)
    )


@router.post("/link-bank-account", response_model=ApiResponse[LinkedAccountSchema])
@limiter.limit(LINK_RATE_LIMIT)
async def link_bank_account(
    request: Request,
    body: BankLinkRequest,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
    validators: ValidatorRegistry = Depends(get_validators),
):
    return await _link(
        db, validators, user_id, Provider.BANK, body.model_dump(exclude_none=True)
    )


# --- Account management ---


@router.get("/accounts", response_model=ApiResponse[list[LinkedAccountSchema]])
async def list_accounts(
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    accounts = await linking_service.list_accounts(db, user_id)
    return ApiResponse[list[LinkedAccountSchema]](
        success=True,
        message=f"{len(accounts)} linked accounts",
        data=[LinkedAccountSchema.from_model(account) for account in accounts],
    )


@router.get("/accounts/summary", response_model=ApiResponse[AccountSummary])
async def account_summary(
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    summary = await linking_service.get_summary(db, user_id)
    return ApiResponse[AccountSummary](
        success=True, message="Account summary", data=summary
    )


@router.post(
    "/accounts/{account_id}/default", response_model=ApiResponse[LinkedAccountSchema]
)
async def make_default_account(
    account_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    account = await linking_service.set_default_account(db, user_id, account_id)
    return ApiResponse[LinkedAccountSchema](
        success=True,
        message="Default account updated",
        data=LinkedAccountSchema.from_model(account),
    )


@router.post(
    "/accounts/{account_id}/status", response_model=ApiResponse[LinkedAccountSchema]
)
async def update_account_status(
    account_id: uuid.UUID,
    body: StatusUpdateRequest,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    account = await linking_service.set_account_status(db, user_id, account_id, body.status)
    return ApiResponse[LinkedAccountSchema](
        success=True,
        message=f"Account is now {account.status.value}",
        data=LinkedAccountSchema.from_model(account),
    )


# --- Balance sync ---


@router.post("/accounts/{account_id}/sync", response_model=ApiResponse[BalanceData])
@limiter.limit(SYNC_RATE_LIMIT)
async def sync_account_balance(
    request: Request,
    account_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
    validators: ValidatorRegistry = Depends(get_validators),
):
    result = await balance_sync.sync_account(db, validators, user_id, account_id)
    return ApiResponse[BalanceData](
        success=True,
        message=result.message,
        data=BalanceData(
            account_id=result.account_id,
            balance=result.balance,
            currency=result.currency,
            updated_at=result.updated_at,
            is_real_balance=result.is_real_balance,
        ),
    )


@router.post("/sync-trading-balances", response_model=ApiResponse[BulkSyncData])
@limiter.limit(SYNC_RATE_LIMIT)
async def sync_trading_balances(
    request: Request,
    user_id: uuid.UUID = Depends(get_required_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    validators: ValidatorRegistry = Depends(get_validators),
):
    result = await balance_sync.sync_all_trading_balances(
        session_factory, validators, user_id
    )
    return ApiResponse[BulkSyncData](
        success=True,
        message=f"Updated {result.updated} of {result.total} trading accounts",
        data=BulkSyncData(updated=result.updated, total=result.total),
    )
