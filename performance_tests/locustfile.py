"""Locust load profile for the accounts API.

To run:
1. Install the load extra (`pip install -e .[load]`).
2. Export JWT_SECRET with the same value the service verifies tokens with.
3. Run locust -f performance_tests/locustfile.py --host http://localhost:8000
4. Open http://localhost:8089 and start swarming.
"""

import random
import time
import uuid

import jwt
from locust import HttpUser, between, events, task


@events.init_command_line_parser.add_listener
def _(parser):
    parser.add_argument(
        "--jwt-secret",
        type=str,
        env_var="JWT_SECRET",
        default="change-me",
        help="Secret used to sign bearer tokens for simulated users",
    )
    parser.add_argument(
        "--callback-secret",
        type=str,
        env_var="MPESA_CALLBACK_SECRET",
        default="",
        help="Shared secret appended to the M-Pesa callback URL",
    )


def _phone() -> str:
    return f"2547{random.randint(10000000, 99999999)}"


class AccountsUser(HttpUser):
    wait_time = between(1, 3)  # seconds

    def on_start(self):
        self.user_id = str(uuid.uuid4())
        token = jwt.encode(
            {"sub": self.user_id, "exp": int(time.time()) + 3600},
            self.environment.parsed_options.jwt_secret,
            algorithm="HS256",
        )
        self.client.headers["Authorization"] = f"Bearer {token}"
        self.account_ids: list[str] = []
        self.mpesa_account_ids: list[str] = []

    @task(1)
    def health_check(self):
        self.client.get("/health", name="App: Health Check")

    @task(3)
    def link_demo_deriv(self):
        # Demo-shaped tokens never leave the service
        body = {
            "platform": "deriv",
            "apiKey": f"demo_{uuid.uuid4().hex[:8]}",
            "accountId": f"VRTC{random.randint(100000, 999999)}",
        }
        with self.client.post(
            "/link-trading-account",
            json=body,
            catch_response=True,
            name="Accounts: Link Deriv (demo)",
        ) as response:
            if response.status_code == 200 and response.json().get("success"):
                self.account_ids.append(response.json()["data"]["id"])
                response.success()
            else:
                response.failure(
                    f"Link failed with status {response.status_code}: {response.text}"
                )

    @task(2)
    def link_mpesa(self):
        with self.client.post(
            "/link-mpesa-account",
            json={"phoneNumber": _phone()},
            catch_response=True,
            name="Accounts: Link M-Pesa",
        ) as response:
            if response.status_code == 200 and response.json().get("success"):
                self.mpesa_account_ids.append(response.json()["data"]["id"])
                response.success()
            elif response.status_code == 503:
                # Daraja not configured in this environment
                response.success()
            else:
                response.failure(
                    f"Link failed with status {response.status_code}: {response.text}"
                )

    @task(5)
    def list_accounts(self):
        self.client.get("/accounts", name="Accounts: List")

    @task(2)
    def sync_one(self):
        if not self.account_ids:
            return
        account_id = random.choice(self.account_ids)
        self.client.post(
            f"/accounts/{account_id}/sync", name="Accounts: Sync One"
        )

    @task(1)
    def sync_all(self):
        self.client.post("/sync-trading-balances", name="Accounts: Sync All")

    @task(1)
    def mpesa_balance_check(self):
        if not self.mpesa_account_ids:
            return
        self.client.post(
            "/mpesa-balance-check",
            json={"accountId": random.choice(self.mpesa_account_ids)},
            name="M-Pesa: Balance Check",
        )

    @task(1)
    def mpesa_callback(self):
        # Unmatched callbacks exercise the parser and dedup ledger
        payload = {
            "Body": {
                "stkCallback": {
                    "MerchantRequestID": uuid.uuid4().hex,
                    "CheckoutRequestID": f"ws_CO_{uuid.uuid4().hex}",
                    "ResultCode": 1032,
                    "ResultDesc": "Request cancelled by user",
                }
            }
        }
        secret = self.environment.parsed_options.callback_secret
        self.client.post(
            "/mpesa-transaction-callback",
            params={"secret": secret} if secret else None,
            json=payload,
            name="M-Pesa: Callback",
        )
