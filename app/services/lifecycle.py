"""Linked account lifecycle.

pending -> active | needs_verification
active -> needs_verification | inactive
needs_verification -> active
inactive -> active

Nothing ever moves back to pending.
"""

import logging

from app.core.exceptions import InvalidStatusTransition
from app.models.linked_account import AccountStatus, LinkedAccount

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AccountStatus, frozenset[AccountStatus]] = {
    AccountStatus.PENDING: frozenset(
        {AccountStatus.ACTIVE, AccountStatus.NEEDS_VERIFICATION}
    ),
    AccountStatus.ACTIVE: frozenset(
        {AccountStatus.NEEDS_VERIFICATION, AccountStatus.INACTIVE}
    ),
    AccountStatus.NEEDS_VERIFICATION: frozenset({AccountStatus.ACTIVE}),
    AccountStatus.INACTIVE: frozenset({AccountStatus.ACTIVE}),
}


def can_transition(current: AccountStatus, target: AccountStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(account: LinkedAccount, target: AccountStatus) -> LinkedAccount:
    """Moves an account to `target`, raising InvalidStatusTransition if not allowed."""
    current = AccountStatus(account.status)
    if not can_transition(current, target):
        raise InvalidStatusTransition(current.value, target.value)
    if current != target:
        logger.info(
            f"Account {account.id} status {current.value} -> {target.value}",
            extra={"props": {"account_id": str(account.id)}},
        )
        account.status = target
    return account
