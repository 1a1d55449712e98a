import hashlib
import hmac
import logging
import time
from decimal import Decimal
from urllib.parse import urlencode

from pydantic import Field

from app.core.exceptions import ErrorKind, ProviderError
from app.core.http import safe_json
from app.models.linked_account import AccountStatus, LinkedAccount, Provider
from app.schemas.linked_account import AccountMetadata, AccountSnapshot
from app.validators.base import (
    CredentialsModel,
    CredentialValidator,
    credential_fingerprint,
    mask_api_key,
    parse_amount,
    register_validator,
)

logger = logging.getLogger(__name__)

ACCOUNT_PATH = "/api/v3/account"
QUOTE_ASSET = "USDT"


class BinanceCredentials(CredentialsModel):
    api_key: str = Field(min_length=20)
    api_secret: str = Field(min_length=20)
    passphrase: str | None = None


def sign_query(query: str, secret: str) -> str:
    """HMAC-SHA256 signature of a query string, hex encoded."""
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()


def usdt_balance(balances: list[dict]) -> tuple[Decimal, bool]:
    """Sums free + locked over USDT entries; the flag says whether any were present."""
    total = Decimal("0")
    found = False
    for entry in balances:
        if not isinstance(entry, dict) or entry.get("asset") != QUOTE_ASSET:
            continue
        found = True
        total += parse_amount(entry.get("free")) + parse_amount(entry.get("locked"))
    return total, found


@register_validator(Provider.BINANCE)
class BinanceValidator(CredentialValidator):
    credentials_model = BinanceCredentials
    label = "Binance"

    # Injectable so tests can pin the signed timestamp
    clock = staticmethod(time.time)

    async def fetch_account(self, api_key: str, api_secret: str) -> dict:
        query = urlencode({"timestamp": int(self.clock() * 1000)})
        signature = sign_query(query, api_secret)
        url = f"{self.config.binance_api_url.rstrip('/')}{ACCOUNT_PATH}?{query}&signature={signature}"

        response = await self._request(
            "GET",
            url,
            headers={"X-MBX-APIKEY": api_key},
            timeout=self.config.binance_timeout_seconds,
        )

        if response.is_success:
            return safe_json(response)

        diagnostic = f"HTTP {response.status_code}: {response.text[:200]}"
        if response.status_code == 401:
            raise ProviderError(
                ErrorKind.INVALID_CREDENTIALS,
                "Invalid Binance API key or secret.",
                diagnostic=diagnostic,
            )
        if response.status_code == 403:
            raise ProviderError(
                ErrorKind.FORBIDDEN,
                "API key does not have required permissions. Please enable 'Read Info' permission.",
                diagnostic=diagnostic,
            )
        if response.status_code == 429:
            raise ProviderError(
                ErrorKind.RATE_LIMITED,
                "Rate limit exceeded. Please try again later.",
                diagnostic=diagnostic,
            )
        raise ProviderError(
            ErrorKind.SERVICE_UNAVAILABLE,
            f"Binance API error: {response.status_code}",
            diagnostic=diagnostic,
        )

    async def validate(self, credentials: BinanceCredentials) -> AccountSnapshot:
        logger.info(f"Validating Binance API key {mask_api_key(credentials.api_key)}")
        data = await self.fetch_account(credentials.api_key, credentials.api_secret)

        balances = data.get("balances") or []
        balance, has_usdt = usdt_balance(balances)
        currency = QUOTE_ASSET if has_usdt else "USD"
        if not has_usdt:
            balance = Decimal("0")

        uid = data.get("uid")
        external_id = str(uid) if uid is not None else credential_fingerprint(credentials.api_key)

        return AccountSnapshot(
            display_name="Binance Account",
            masked_number=f"****{external_id[-4:]}",
            balance=balance,
            currency=currency,
            status=AccountStatus.ACTIVE,
            metadata=AccountMetadata(
                platform=Provider.BINANCE.value,
                external_account_id=external_id,
                masked_api_key=mask_api_key(credentials.api_key),
                has_balance_access=True,
                validated_with_real_api=True,
                extra={
                    "accountType": data.get("accountType") or "SPOT",
                    "canTrade": bool(data.get("canTrade")),
                    "canWithdraw": bool(data.get("canWithdraw")),
                    "canDeposit": bool(data.get("canDeposit")),
                    "assetCount": len(balances),
                },
            ),
        )

    async def fetch_balance(self, account: LinkedAccount) -> Decimal:
        api_key, api_secret = self.config.binance_api_key, self.config.binance_api_secret
        if not (api_key and api_secret):
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE, "Binance API credentials not configured"
            )
        data = await self.fetch_account(api_key, api_secret)
        balance, _ = usdt_balance(data.get("balances") or [])
        return balance
