import uuid
from decimal import Decimal

import httpx
import pytest

from app import crud
from app.core.exceptions import (
    ErrorKind,
    InvalidStatusTransition,
    NotFoundError,
    ProviderError,
)
from app.models.linked_account import AccountStatus, Provider
from app.schemas.linked_account import AccountSnapshot
from app.services import linking_service
from app.services.mpesa_callback import CallbackOutcome, process_stk_callback
from app.services.mpesa_client import OAUTH_PATH, STK_PUSH_PATH
from app.validators import ValidatorRegistry


def _deriv(account_id: str) -> dict:
    return {"apiKey": "demo_token", "accountId": account_id}


@pytest.mark.asyncio
async def test_first_account_is_default_and_later_ones_are_not(db, validators, user_id):
    first, created = await linking_service.link_account(
        db, validators, user_id, Provider.DERIV, _deriv("VRTC100001")
    )
    second, _ = await linking_service.link_account(
        db, validators, user_id, Provider.ETORO, {"apiKey": "etoro-key-1"}
    )
    third, _ = await linking_service.link_account(
        db, validators, user_id, Provider.DERIV, _deriv("VRTC100002")
    )

    assert created is True
    assert first.is_default is True
    assert second.is_default is False
    assert third.is_default is False
    assert first.user_id == user_id
    assert first.status == AccountStatus.ACTIVE
    assert second.status == AccountStatus.NEEDS_VERIFICATION
    assert first.last_synced_at is not None


@pytest.mark.asyncio
async def test_duplicate_link_returns_existing_record(db, validators, user_id):
    original, created = await linking_service.link_account(
        db, validators, user_id, "deriv", _deriv("VRTC100001")
    )
    again, created_again = await linking_service.link_account(
        db, validators, user_id, "deriv", _deriv("VRTC100001")
    )

    assert created is True
    assert created_again is False
    assert again.id == original.id
    assert await crud.linked_account.acount_by_owner(db, user_id=user_id) == 1


@pytest.mark.asyncio
async def test_same_identity_for_different_users(db, validators):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    a, _ = await linking_service.link_account(db, validators, alice, "deriv", _deriv("VRTC1"))
    b, created = await linking_service.link_account(db, validators, bob, "deriv", _deriv("VRTC1"))

    assert created is True
    assert a.id != b.id
    assert a.is_default and b.is_default


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider, payload, kind",
    [
        ("binance", {"apiKey": "short", "apiSecret": "x" * 24}, ErrorKind.INVALID_INPUT),
        (
            "mt5",
            {"broker": "Exness", "login": 4242, "password": "secret1", "server": "Exness-Real"},
            ErrorKind.INVALID_CREDENTIALS,
        ),
        ("bank", {"bankName": "KCB", "accountNumber": "1234", "accountName": "J"}, ErrorKind.SERVICE_UNAVAILABLE),
        ("deriv", {}, ErrorKind.INVALID_INPUT),
    ],
)
async def test_failed_validation_persists_nothing(db, validators, user_id, provider, payload, kind):
    with pytest.raises(ProviderError) as exc_info:
        await linking_service.link_account(db, validators, user_id, provider, payload)

    assert exc_info.value.kind == kind
    assert await crud.linked_account.acount_by_owner(db, user_id=user_id) == 0


def test_build_account_defaults_currency_per_provider(user_id):
    snapshot = AccountSnapshot(display_name="M-Pesa Account", masked_number="****5678")

    mpesa = linking_service.build_account(user_id, Provider.MPESA, snapshot, is_default=True)
    etoro = linking_service.build_account(user_id, Provider.ETORO, snapshot, is_default=False)

    assert mpesa.currency == "KES"
    assert etoro.currency == "USD"
    assert mpesa.platform == "mpesa"
    assert mpesa.balance == Decimal("0")


@pytest.mark.asyncio
async def test_set_default_account_moves_the_flag(db, validators, user_id):
    first, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))
    second, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A2"))

    updated = await linking_service.set_default_account(db, user_id, second.id)
    await db.refresh(first)

    assert updated.id == second.id
    assert updated.is_default is True
    assert first.is_default is False
    default = await crud.linked_account.aget_default(db, user_id=user_id)
    assert default.id == second.id


@pytest.mark.asyncio
async def test_set_default_account_of_another_user(db, validators, user_id):
    account, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))

    with pytest.raises(NotFoundError):
        await linking_service.set_default_account(db, uuid.uuid4(), account.id)


@pytest.mark.asyncio
async def test_list_and_summary(db, validators, user_id):
    await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))
    await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A2"))
    await linking_service.link_account(db, validators, user_id, "etoro", {"apiKey": "key-1"})

    accounts = await linking_service.list_accounts(db, user_id)
    summary = await linking_service.get_summary(db, user_id)

    assert len(accounts) == 3
    assert summary.total_accounts == 3
    assert summary.balance_by_currency == {"USD": Decimal("20000.00")}
    assert summary.by_provider["deriv"].count == 2
    assert summary.by_provider["etoro"].balance == Decimal("0")
    assert summary.default_account_id is not None


def _stk_registry(provider_config, http_client, provider_handler, checkout_ids):
    pushes = iter(checkout_ids)
    provider_handler.routes.update(
        {
            OAUTH_PATH: httpx.Response(200, json={"access_token": "daraja-token"}),
            STK_PUSH_PATH: lambda request: httpx.Response(
                200, json={"CheckoutRequestID": next(pushes), "ResponseCode": "0"}
            ),
        }
    )
    config = provider_config.model_copy(
        update={
            "mpesa_consumer_key": "consumer-key",
            "mpesa_consumer_secret": "consumer-secret",
            "mpesa_shortcode": "174379",
            "mpesa_passkey": "passkey",
            "mpesa_callback_url": "https://payvex.test/mpesa-transaction-callback",
        }
    )
    return ValidatorRegistry(config, http_client)


def _stk_success(checkout_id: str, amount=1) -> dict:
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": amount},
                        {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                        {"Name": "PhoneNumber", "Value": 254712345678},
                    ]
                },
            }
        }
    }


@pytest.mark.asyncio
async def test_relinking_mpesa_tracks_the_latest_verification_push(
    db, provider_config, http_client, provider_handler, user_id
):
    validators = _stk_registry(
        provider_config, http_client, provider_handler, ["ws_CO_first", "ws_CO_second"]
    )
    payload = {"phoneNumber": "0712345678"}

    first, created = await linking_service.link_account(db, validators, user_id, "mpesa", payload)
    again, created_again = await linking_service.link_account(db, validators, user_id, "mpesa", payload)

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert again.stk_checkout_id == "ws_CO_second"
    assert again.status == AccountStatus.PENDING

    outcome = await process_stk_callback(db, _stk_success("ws_CO_second", amount=1))

    accounts = await crud.linked_account.aget_multi(db)
    assert outcome == CallbackOutcome.CREDITED
    assert len(accounts) == 1
    assert accounts[0].user_id == user_id
    assert accounts[0].status == AccountStatus.ACTIVE
    assert accounts[0].balance == Decimal("1")


@pytest.mark.asyncio
async def test_relinking_verified_mpesa_keeps_it_active(
    db, provider_config, http_client, provider_handler, user_id
):
    validators = _stk_registry(
        provider_config, http_client, provider_handler, ["ws_CO_first", "ws_CO_second"]
    )
    payload = {"phoneNumber": "0712345678"}
    account, _ = await linking_service.link_account(db, validators, user_id, "mpesa", payload)
    await process_stk_callback(db, _stk_success("ws_CO_first"))

    again, _ = await linking_service.link_account(db, validators, user_id, "mpesa", payload)

    assert again.id == account.id
    assert again.status == AccountStatus.ACTIVE
    assert again.stk_checkout_id == "ws_CO_second"


@pytest.mark.asyncio
async def test_account_status_toggles_between_active_and_inactive(db, validators, user_id):
    account, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))

    paused = await linking_service.set_account_status(db, user_id, account.id, AccountStatus.INACTIVE)
    assert paused.status == AccountStatus.INACTIVE

    resumed = await linking_service.set_account_status(db, user_id, account.id, AccountStatus.ACTIVE)
    assert resumed.status == AccountStatus.ACTIVE


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start, target",
    [
        (AccountStatus.INACTIVE, AccountStatus.PENDING),
        (AccountStatus.ACTIVE, AccountStatus.NEEDS_VERIFICATION),
        (None, AccountStatus.ACTIVE),
    ],
)
async def test_account_status_rejects_moves_outside_the_toggle(db, validators, user_id, start, target):
    if start is None:
        # eToro links land in needs_verification
        account, _ = await linking_service.link_account(
            db, validators, user_id, "etoro", {"apiKey": "etoro-key-1"}
        )
    else:
        account, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))
        if start != AccountStatus.ACTIVE:
            await linking_service.set_account_status(db, user_id, account.id, start)
    before = account.status

    with pytest.raises(InvalidStatusTransition) as exc_info:
        await linking_service.set_account_status(db, user_id, account.id, target)

    assert exc_info.value.status_code == 400
    await db.refresh(account)
    assert account.status == before


@pytest.mark.asyncio
async def test_account_status_of_another_user(db, validators, user_id):
    account, _ = await linking_service.link_account(db, validators, user_id, "deriv", _deriv("A1"))

    with pytest.raises(NotFoundError):
        await linking_service.set_account_status(db, uuid.uuid4(), account.id, AccountStatus.INACTIVE)
