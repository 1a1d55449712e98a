import uuid
from decimal import Decimal

import httpx
import pytest

from app.services.mpesa_client import OAUTH_PATH, STK_PUSH_PATH

pytestmark = pytest.mark.integration

CHECKOUT_ID = "ws_CO_260220251230441234"
CALLBACK_URL = "/mpesa-transaction-callback?secret=test-callback-secret"


@pytest.fixture
def provider_config(provider_config):
    return provider_config.model_copy(
        update={
            "mpesa_consumer_key": "consumer-key",
            "mpesa_consumer_secret": "consumer-secret",
            "mpesa_shortcode": "174379",
            "mpesa_passkey": "passkey",
            "mpesa_callback_url": "https://payvex.test/mpesa-transaction-callback",
            "plaid_client_id": "plaid-client",
            "plaid_secret": "plaid-secret",
        }
    )


@pytest.fixture
def provider_handler(provider_handler):
    provider_handler.routes.update(
        {
            OAUTH_PATH: httpx.Response(200, json={"access_token": "daraja-token"}),
            STK_PUSH_PATH: httpx.Response(
                200,
                json={
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": CHECKOUT_ID,
                    "ResponseCode": "0",
                },
            ),
        }
    )
    return provider_handler


def deriv_demo(account_id="VRTC200001"):
    return {"platform": "deriv", "apiKey": "demo_token", "accountId": account_id}


def stk_callback(result_code=0, amount=1, phone=254712345678):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": CHECKOUT_ID,
        "ResultCode": result_code,
        "ResultDesc": "Processed" if result_code == 0 else "DS timeout user cannot be reached",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": "QKT1ABC2DE"},
                {"Name": "TransactionDate", "Value": 20250226123501},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}


async def _accounts(app_client, auth_headers):
    response = await app_client.get("/accounts", headers=auth_headers)
    assert response.status_code == 200
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(app_client):
    response = await app_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, path",
    [
        ("post", "/link-trading-account"),
        ("post", "/link-mpesa-account"),
        ("post", "/link-bank-account"),
        ("get", "/accounts"),
        ("post", "/sync-trading-balances"),
        ("post", "/mpesa-balance-check"),
    ],
)
async def test_endpoints_require_a_bearer_token(app_client, method, path):
    response = await getattr(app_client, method)(path)

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Unauthorized"}


@pytest.mark.asyncio
async def test_link_deriv_demo_then_duplicate(app_client, auth_headers, user_id):
    response = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Deriv account linked successfully"
    account = body["data"]
    assert account["userId"] == str(user_id)
    assert account["provider"] == "deriv"
    assert account["isDefault"] is True
    assert account["status"] == "active"
    assert Decimal(account["balance"]) == Decimal("10000.00")
    assert account["metadata"]["extra"]["isDemo"] is True
    assert account["metadata"]["externalAccountId"] == "VRTC200001"

    again = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)

    assert again.status_code == 200
    assert again.json()["message"] == "Deriv account is already linked"
    assert again.json()["data"]["id"] == account["id"]
    assert len(await _accounts(app_client, auth_headers)) == 1


@pytest.mark.asyncio
async def test_second_link_is_not_default(app_client, auth_headers):
    await app_client.post("/link-trading-account", json=deriv_demo("VRTC1"), headers=auth_headers)
    response = await app_client.post(
        "/link-trading-account",
        json={"platform": "etoro", "apiKey": "etoro-key-9876"},
        headers=auth_headers,
    )

    account = response.json()["data"]
    assert account["isDefault"] is False
    assert account["status"] == "needs_verification"
    assert account["metadata"]["requiresManualVerification"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, status_code, message",
    [
        ({"apiKey": "demo"}, 400, "Platform is required"),
        ({"platform": "robinhood", "apiKey": "k"}, 400, "Unsupported platform: robinhood"),
        ({"platform": "mpesa", "apiKey": "k"}, 400, "Unsupported platform: mpesa"),
        ({"platform": "binance", "apiKey": "short", "apiSecret": "short"}, 400, None),
        (
            {"platform": "mt5", "broker": "Exness", "login": 1234, "password": "secret1", "server": "Exness-Real"},
            401,
            None,
        ),
    ],
)
async def test_link_trading_rejections_persist_nothing(
    app_client, auth_headers, provider_handler, payload, status_code, message
):
    response = await app_client.post("/link-trading-account", json=payload, headers=auth_headers)

    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    if message:
        assert body["message"] == message
    assert provider_handler.requests == []
    assert await _accounts(app_client, auth_headers) == []


@pytest.mark.asyncio
async def test_binance_error_message_hides_provider_detail(app_client, auth_headers, provider_handler):
    provider_handler.routes["/api/v3/account"] = httpx.Response(
        401, json={"code": -2015, "msg": "Invalid API-key, IP, or permissions for action."}
    )

    response = await app_client.post(
        "/link-trading-account",
        json={"platform": "binance", "apiKey": "k" * 24, "apiSecret": "s" * 24},
        headers=auth_headers,
    )

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid Binance API key or secret."}


@pytest.mark.asyncio
async def test_mpesa_link_and_callback_activate_account(app_client, auth_headers):
    response = await app_client.post(
        "/link-mpesa-account", json={"phoneNumber": "0712345678"}, headers=auth_headers
    )

    assert response.status_code == 200
    account = response.json()["data"]
    assert account["status"] == "pending"
    assert account["currency"] == "KES"
    assert account["maskedNumber"] == "****5678"
    assert account["metadata"]["stkCheckoutId"] == CHECKOUT_ID

    ack = await app_client.post(CALLBACK_URL, json=stk_callback(amount=1))
    assert ack.status_code == 200
    assert ack.json() == {"ResultCode": 0, "ResultDesc": "Success"}

    [updated] = await _accounts(app_client, auth_headers)
    assert updated["status"] == "active"
    assert Decimal(updated["balance"]) == Decimal("1")
    assert updated["metadata"]["mpesaReceiptNumber"] == "QKT1ABC2DE"
    assert updated["metadata"]["lastTransaction"]["type"] == "credit"

    # Safaricom redelivers; the balance must not move again
    await app_client.post(CALLBACK_URL, json=stk_callback(amount=1))
    [after_retry] = await _accounts(app_client, auth_headers)
    assert Decimal(after_retry["balance"]) == Decimal("1")


@pytest.mark.asyncio
async def test_mpesa_failure_callback(app_client, auth_headers):
    await app_client.post("/link-mpesa-account", json={"phoneNumber": "0712345678"}, headers=auth_headers)

    ack = await app_client.post(CALLBACK_URL, json=stk_callback(result_code=1037))

    assert ack.json()["ResultCode"] == 0
    [account] = await _accounts(app_client, auth_headers)
    assert account["status"] == "needs_verification"
    assert Decimal(account["balance"]) == Decimal("0")
    assert account["metadata"]["failureReason"] == "DS timeout user cannot be reached"


@pytest.mark.asyncio
async def test_callback_with_wrong_secret_is_acked_and_ignored(app_client, auth_headers):
    await app_client.post("/link-mpesa-account", json={"phoneNumber": "0712345678"}, headers=auth_headers)

    ack = await app_client.post(
        "/mpesa-transaction-callback?secret=guess", json=stk_callback(amount=100)
    )

    assert ack.status_code == 200
    assert ack.json()["ResultCode"] == 0
    [account] = await _accounts(app_client, auth_headers)
    assert account["status"] == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"not json", b"[]", b'{"Body": null}'])
async def test_callback_acks_malformed_bodies(app_client, content):
    response = await app_client.post(
        CALLBACK_URL, content=content, headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 200
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}


@pytest.mark.asyncio
async def test_invalid_mpesa_number(app_client, auth_headers):
    response = await app_client.post(
        "/link-mpesa-account", json={"phoneNumber": "71234567"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_link_bank_account_is_pending(app_client, auth_headers):
    response = await app_client.post(
        "/link-bank-account",
        json={"bankName": "KCB", "accountNumber": "1100223344", "accountName": "Jane Wanjiku"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    account = response.json()["data"]
    assert account["status"] == "pending"
    assert account["maskedNumber"] == "****3344"
    assert response.json()["message"] == "Bank account linked successfully"


@pytest.mark.asyncio
async def test_link_bank_missing_fields(app_client, auth_headers):
    response = await app_client.post(
        "/link-bank-account", json={"bankName": "KCB"}, headers=auth_headers
    )
    assert response.status_code == 400
    assert "accountNumber" in response.json()["message"]


@pytest.mark.asyncio
async def test_sync_single_account(app_client, auth_headers):
    linked = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)
    account_id = linked.json()["data"]["id"]

    response = await app_client.post(f"/accounts/{account_id}/sync", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["accountId"] == account_id
    assert data["isRealBalance"] is False
    assert Decimal(data["balance"]) in {
        Decimal(v) for v in (0, 500, 1000, 2500, 5000, 10000, 25000, 50000)
    }


@pytest.mark.asyncio
async def test_sync_without_balance_access_is_forbidden(app_client, auth_headers):
    linked = await app_client.post(
        "/link-trading-account",
        json={"platform": "interactive_brokers", "apiKey": "ib-key-0001"},
        headers=auth_headers,
    )
    account_id = linked.json()["data"]["id"]

    response = await app_client.post(f"/accounts/{account_id}/sync", headers=auth_headers)

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "message": "This account does not have real balance access",
    }


@pytest.mark.asyncio
async def test_sync_unknown_account(app_client, auth_headers):
    response = await app_client.post(f"/accounts/{uuid.uuid4()}/sync", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_bulk_sync(app_client, auth_headers):
    for account_id in ("VRTC1", "VRTC2"):
        await app_client.post("/link-trading-account", json=deriv_demo(account_id), headers=auth_headers)
    await app_client.post(
        "/link-trading-account", json={"platform": "etoro", "apiKey": "etoro-1"}, headers=auth_headers
    )

    response = await app_client.post("/sync-trading-balances", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"updated": 2, "total": 2}


@pytest.mark.asyncio
async def test_mpesa_balance_check(app_client, auth_headers):
    linked = await app_client.post(
        "/link-mpesa-account", json={"phoneNumber": "0712345678"}, headers=auth_headers
    )
    account_id = linked.json()["data"]["id"]

    response = await app_client.post(
        "/mpesa-balance-check", json={"accountId": account_id}, headers=auth_headers
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["currency"] == "KES"
    assert data["isRealBalance"] is True
    assert Decimal(data["balance"]) == Decimal("0")


@pytest.mark.asyncio
async def test_mpesa_balance_check_rejects_other_providers(app_client, auth_headers):
    linked = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)

    response = await app_client.post(
        "/mpesa-balance-check",
        json={"accountId": linked.json()["data"]["id"]},
        headers=auth_headers,
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_malformed_request_body_uses_envelope(app_client, auth_headers):
    response = await app_client.post(
        "/mpesa-balance-check", json={"accountId": "not-a-uuid"}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Missing or invalid fields: accountId"}


@pytest.mark.asyncio
async def test_default_account_and_summary(app_client, auth_headers):
    first = await app_client.post("/link-trading-account", json=deriv_demo("VRTC1"), headers=auth_headers)
    second = await app_client.post("/link-trading-account", json=deriv_demo("VRTC2"), headers=auth_headers)
    second_id = second.json()["data"]["id"]

    response = await app_client.post(f"/accounts/{second_id}/default", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["isDefault"] is True
    defaults = [a["id"] for a in await _accounts(app_client, auth_headers) if a["isDefault"]]
    assert defaults == [second_id]

    summary = (await app_client.get("/accounts/summary", headers=auth_headers)).json()["data"]
    assert summary["totalAccounts"] == 2
    assert summary["defaultAccountId"] == second_id
    assert Decimal(summary["balanceByCurrency"]["USD"]) == Decimal("20000")
    assert first.json()["data"]["id"] != second_id


@pytest.mark.asyncio
async def test_other_users_accounts_are_invisible(app_client, auth_headers):
    from app.auth import create_access_token

    linked = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)
    account_id = linked.json()["data"]["id"]
    stranger = {"Authorization": f"Bearer {create_access_token({'sub': str(uuid.uuid4())})}"}

    assert await _accounts(app_client, stranger) == []
    response = await app_client.post(f"/accounts/{account_id}/default", headers=stranger)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_account_status_toggle(app_client, auth_headers):
    linked = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)
    account_id = linked.json()["data"]["id"]

    paused = await app_client.post(
        f"/accounts/{account_id}/status", json={"status": "inactive"}, headers=auth_headers
    )
    assert paused.status_code == 200
    assert paused.json()["data"]["status"] == "inactive"

    rejected = await app_client.post(
        f"/accounts/{account_id}/status", json={"status": "pending"}, headers=auth_headers
    )
    assert rejected.status_code == 400
    assert rejected.json() == {
        "success": False,
        "message": "Cannot move account from 'inactive' to 'pending'",
    }

    resumed = await app_client.post(
        f"/accounts/{account_id}/status", json={"status": "active"}, headers=auth_headers
    )
    assert resumed.status_code == 200
    assert resumed.json()["data"]["status"] == "active"


@pytest.mark.asyncio
async def test_account_status_rejects_unknown_values(app_client, auth_headers):
    linked = await app_client.post("/link-trading-account", json=deriv_demo(), headers=auth_headers)
    account_id = linked.json()["data"]["id"]

    response = await app_client.post(
        f"/accounts/{account_id}/status", json={"status": "frozen"}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
