import hmac
import logging
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.accounts.dependencies import get_validators
from app.auth import get_required_user_id
from app.core.config import settings
from app.core.rate_limit import SYNC_RATE_LIMIT, limiter
from app.database import get_async_db, get_session_factory, session_scope
from app.schemas.linked_account import ApiResponse, BalanceData, MpesaBalanceCheckRequest
from app.schemas.mpesa_callback import CALLBACK_ACK
from app.services.balance_sync import check_mpesa_balance
from app.services.mpesa_callback import process_stk_callback
from app.validators import ValidatorRegistry

logger = logging.getLogger(__name__)
router = APIRouter(tags=["M-Pesa"])


def callback_secret_matches(provided: str | None) -> bool:
    expected = settings.MPESA_CALLBACK_SECRET
    if not expected:
        return True
    return hmac.compare_digest((provided or "").encode(), expected.encode())


@router.post("/mpesa-balance-check", response_model=ApiResponse[BalanceData])
@limiter.limit(SYNC_RATE_LIMIT)
async def mpesa_balance_check(
    request: Request,
    body: MpesaBalanceCheckRequest,
    user_id: uuid.UUID = Depends(get_required_user_id),
    db: AsyncSession = Depends(get_async_db),
    validators: ValidatorRegistry = Depends(get_validators),
):
    result = await check_mpesa_balance(db, validators, user_id, body.account_id)
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


@router.post("/mpesa-transaction-callback")
async def mpesa_transaction_callback(
    request: Request,
    secret: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Daraja STK callback. Always acknowledged with 200 so Safaricom does not retry."""
    if not callback_secret_matches(secret):
        logger.warning("M-Pesa callback rejected: secret mismatch")
        return JSONResponse(CALLBACK_ACK)

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("M-Pesa callback body is not valid JSON")
        return JSONResponse(CALLBACK_ACK)

    try:
        async with session_scope(session_factory) as db:
            await process_stk_callback(db, payload)
    except Exception as e:
        logger.error(f"Error processing M-Pesa callback: {e}", exc_info=True)

    return JSONResponse(CALLBACK_ACK)
