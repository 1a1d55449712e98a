import base64
import logging
from datetime import UTC, datetime
from decimal import Decimal

import httpx

from app.core.config import ProviderConfig
from app.core.exceptions import ErrorKind, ProviderError
from app.core.http import safe_json, send_request

logger = logging.getLogger(__name__)

OAUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
LABEL = "M-Pesa"


def stk_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now(UTC)).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Daraja STK password: base64(shortcode + passkey + timestamp)."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


class DarajaClient:
    """Thin async client for the Safaricom Daraja endpoints this service uses."""

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client
        self.base_url = config.mpesa_base_url.rstrip("/")

    async def get_access_token(self) -> str:
        """OAuth client-credentials exchange. Raises ProviderError on any failure."""
        if not self.config.mpesa_configured:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "M-Pesa API credentials not configured. Please contact support.",
            )

        response = await send_request(
            self.client,
            LABEL,
            "GET",
            f"{self.base_url}{OAUTH_PATH}",
            params={"grant_type": "client_credentials"},
            auth=(self.config.mpesa_consumer_key, self.config.mpesa_consumer_secret),
            timeout=self.config.timeout_seconds,
        )
        if response.status_code in (400, 401):
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Failed to authenticate with M-Pesa API",
                diagnostic=f"HTTP {response.status_code}: {response.text[:200]}",
            )
        if not response.is_success:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "M-Pesa service is currently unavailable",
                diagnostic=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        token = safe_json(response).get("access_token")
        if not token:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Failed to authenticate with M-Pesa API",
                diagnostic="OAuth response carried no access_token",
            )
        return token

    async def stk_push(
        self,
        access_token: str,
        phone_number: str,
        amount: Decimal,
        reference: str,
        description: str = "Account verification",
    ) -> str:
        """Sends an STK push and returns its CheckoutRequestID."""
        timestamp = stk_timestamp()
        shortcode = self.config.mpesa_shortcode
        payload = {
            "BusinessShortCode": shortcode,
            "Password": stk_password(shortcode, self.config.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.config.mpesa_callback_url,
            "AccountReference": reference,
            "TransactionDesc": description,
        }
        response = await send_request(
            self.client,
            LABEL,
            "POST",
            f"{self.base_url}{STK_PUSH_PATH}",
            json=payload,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.config.timeout_seconds,
        )
        data = safe_json(response)
        checkout_request_id = data.get("CheckoutRequestID")
        if not response.is_success or str(data.get("ResponseCode", "")) != "0" or not checkout_request_id:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "STK push was not accepted",
                diagnostic=f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return checkout_request_id
