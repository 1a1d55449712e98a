"""MetaTrader 5 accounts.

MT5 has no public REST surface. Brokers that expose a WebAPI can be configured
through MT5_API_URL / MT5_API_KEY; everywhere else the credentials are only
format checked and the account figures are synthesized.
"""

import logging
import random
from decimal import Decimal

from pydantic import Field

from app.core.exceptions import ErrorKind, ProviderError
from app.core.http import safe_json
from app.models.linked_account import AccountStatus, LinkedAccount, Provider
from app.schemas.linked_account import AccountMetadata, AccountSnapshot
from app.validators.base import (
    TWO_PLACES,
    CredentialsModel,
    CredentialValidator,
    parse_amount,
    register_validator,
)

logger = logging.getLogger(__name__)

MIN_LOGIN = 100000
MIN_PASSWORD_LENGTH = 6
MIN_SERVER_LENGTH = 3
LEVERAGE_OPTIONS = (50, 100, 200, 300, 400, 500)
DEMO_SERVER_MARKERS = ("demo", "trial", "test")


class MT5Credentials(CredentialsModel):
    broker: str = Field(min_length=1)
    login: int
    password: str = Field(min_length=1)
    server: str = Field(min_length=1)
    investor_password: str | None = None


def check_format(credentials: MT5Credentials) -> None:
    if credentials.login < MIN_LOGIN:
        raise ProviderError(
            ErrorKind.INVALID_CREDENTIALS,
            "Invalid MT5 login number. Login should be at least 6 digits.",
        )
    if len(credentials.password) < MIN_PASSWORD_LENGTH:
        raise ProviderError(
            ErrorKind.INVALID_CREDENTIALS,
            "Invalid MT5 password. Password should be at least 6 characters.",
        )
    if len(credentials.server) < MIN_SERVER_LENGTH:
        raise ProviderError(
            ErrorKind.INVALID_CREDENTIALS,
            "Invalid MT5 server name. Server should be at least 3 characters.",
        )


def is_demo_account(server: str, login: int) -> bool:
    server = server.lower()
    return any(marker in server for marker in DEMO_SERVER_MARKERS) or str(login).startswith("1")


def login_from_external_id(external_account_id: str | None) -> str | None:
    """`<server>:<login>` -> login. Server names may themselves contain colons."""
    _, sep, login = (external_account_id or "").rpartition(":")
    return login if sep and login.isdigit() else None


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES)


@register_validator(Provider.MT5)
class MT5Validator(CredentialValidator):
    credentials_model = MT5Credentials
    label = "MT5"

    def __init__(self, config, client, rng: random.Random | None = None):
        super().__init__(config, client)
        self.rng = rng or random.Random()

    async def validate(self, credentials: MT5Credentials) -> AccountSnapshot:
        logger.info(
            f"Validating MT5 account: Broker={credentials.broker}, Server={credentials.server}"
        )
        check_format(credentials)

        if self.config.mt5_webapi_configured:
            return await self._validate_with_webapi(credentials)
        return self._synthesize(credentials)

    def _synthesize(self, credentials: MT5Credentials) -> AccountSnapshot:
        is_demo = is_demo_account(credentials.server, credentials.login)
        leverage = self.rng.choice(LEVERAGE_OPTIONS)
        if is_demo:
            balance = 10000 + self.rng.random() * 40000
        else:
            balance = 500 + self.rng.random() * 50000
        equity = balance * (0.85 + self.rng.random() * 0.3)
        margin = equity / leverage
        margin_level = (equity / margin) * 100 if margin > 0 else 0

        account_number = f"MT5{str(credentials.login)[-6:]}"
        return AccountSnapshot(
            display_name=f"{credentials.broker} {'Demo' if is_demo else 'Live'} Account",
            masked_number=f"****{account_number[-4:]}",
            balance=_money(balance),
            currency="USD",
            status=AccountStatus.ACTIVE,
            metadata=AccountMetadata(
                platform=Provider.MT5.value,
                external_account_id=f"{credentials.server}:{credentials.login}",
                has_balance_access=True,
                validated_with_real_api=False,
                extra={
                    "brokerName": credentials.broker,
                    "server": credentials.server,
                    "login": credentials.login,
                    "leverage": leverage,
                    "equity": float(_money(equity)),
                    "margin": float(_money(margin)),
                    "marginLevel": float(_money(margin_level)),
                    "isDemo": is_demo,
                    "investorPasswordSet": bool(credentials.investor_password),
                },
            ),
        )

    async def _validate_with_webapi(self, credentials: MT5Credentials) -> AccountSnapshot:
        base_url = self.config.mt5_api_url.rstrip("/")
        logger.info(f"Authenticating MT5 login on {credentials.server} via WebAPI")

        auth_response = await self._request(
            "POST",
            f"{base_url}/api/auth",
            headers={"X-API-Key": self.config.mt5_api_key},
            json={
                "login": credentials.login,
                "password": credentials.password,
                "server": credentials.server,
            },
        )
        if auth_response.status_code in (401, 403):
            raise ProviderError(
                ErrorKind.INVALID_CREDENTIALS,
                "Invalid MT5 credentials. Please check your login, password, and server.",
                diagnostic=f"HTTP {auth_response.status_code}: {auth_response.text[:200]}",
            )
        if not auth_response.is_success:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Cannot connect to MT5 server. Check server name and internet connection.",
                diagnostic=f"HTTP {auth_response.status_code}: {auth_response.text[:200]}",
            )

        token = safe_json(auth_response).get("token")
        account_response = await self._request(
            "GET",
            f"{base_url}/api/account",
            headers={"Authorization": f"Bearer {token}", "X-API-Key": self.config.mt5_api_key},
        )
        if not account_response.is_success:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Failed to get MT5 account info",
                diagnostic=f"HTTP {account_response.status_code}",
            )
        info = safe_json(account_response)

        return AccountSnapshot(
            display_name=info.get("name") or f"MT5 Account {credentials.login}",
            masked_number=f"****{str(credentials.login)[-4:]}",
            balance=parse_amount(info.get("balance")),
            currency=info.get("currency") or "USD",
            status=AccountStatus.ACTIVE,
            metadata=AccountMetadata(
                platform=Provider.MT5.value,
                external_account_id=f"{credentials.server}:{credentials.login}",
                has_balance_access=True,
                validated_with_real_api=True,
                extra={
                    "brokerName": info.get("broker") or credentials.broker,
                    "server": credentials.server,
                    "login": credentials.login,
                    "leverage": info.get("leverage") or 100,
                    "equity": info.get("equity") or 0,
                    "margin": info.get("margin") or 0,
                    "isDemo": is_demo_account(credentials.server, credentials.login),
                },
            ),
        )

    async def fetch_balance(self, account: LinkedAccount) -> Decimal:
        if not self.config.mt5_webapi_configured:
            raise ProviderError(ErrorKind.SERVICE_UNAVAILABLE, "MT5 WebAPI not configured")
        login = login_from_external_id(account.external_account_id)
        if login is None:
            raise ProviderError(ErrorKind.INVALID_INPUT, "MT5 account has no login on record")
        response = await self._request(
            "GET",
            f"{self.config.mt5_api_url.rstrip('/')}/api/account/{login}",
            headers={"X-API-Key": self.config.mt5_api_key},
        )
        if not response.is_success:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Could not fetch MT5 balance",
                diagnostic=f"HTTP {response.status_code}",
            )
        return parse_amount(safe_json(response).get("balance"))
