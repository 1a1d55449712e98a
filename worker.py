"""Periodic balance refresh worker.

Every BULK_SYNC_INTERVAL_SECONDS, runs the bulk trading-balance sync for each
user that has at least one active trading account.
"""

import asyncio
import logging
import signal

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app import crud
from app.core.config import settings
from app.database import AsyncSessionLocal, session_scope
from app.logging_config import setup_logging
from app.services.balance_sync import sync_all_trading_balances
from app.validators import ValidatorRegistry

logger = logging.getLogger("balance_sync_worker")


async def run_sync_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    validators: ValidatorRegistry,
) -> int:
    """One pass over every user with active trading accounts. Returns accounts updated."""
    async with session_scope(session_factory) as db:
        user_ids = await crud.linked_account.aget_users_with_active_trading_accounts(db)

    updated = 0
    for user_id in user_ids:
        log_props = {"user_id": str(user_id)}
        try:
            result = await sync_all_trading_balances(session_factory, validators, user_id)
            updated += result.updated
        except SQLAlchemyError:
            logger.error(
                "Database error during bulk sync", exc_info=True, extra={"props": log_props}
            )
        except Exception:
            logger.error(
                "Unexpected error during bulk sync", exc_info=True, extra={"props": log_props}
            )

    logger.info(
        f"Sync cycle complete: {updated} accounts updated for {len(user_ids)} users",
        extra={"props": {"users": len(user_ids), "updated": updated}},
    )
    return updated


# --- Worker Lifecycle ---

stop_event = asyncio.Event()


def handle_signal(sig, frame):
    logger.warning(
        f"Received signal {sig}, shutting down...", extra={"props": {"signal": sig}}
    )
    stop_event.set()


async def main():
    setup_logging()
    logger.info("Starting balance sync worker...")

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig, None)

    interval = settings.BULK_SYNC_INTERVAL_SECONDS
    async with httpx.AsyncClient() as client:
        validators = ValidatorRegistry(settings.provider_config(), client)
        try:
            while not stop_event.is_set():
                try:
                    await run_sync_cycle(AsyncSessionLocal, validators)
                except SQLAlchemyError:
                    logger.error("Could not load users for sync cycle", exc_info=True)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Balance sync worker task cancelled.")
        finally:
            logger.info("Balance sync worker shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
