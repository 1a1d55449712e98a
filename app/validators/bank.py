import logging

from pydantic import Field

from app.core.exceptions import ErrorKind, ProviderError
from app.core.phone import mask_identifier
from app.models.linked_account import AccountStatus, Provider
from app.schemas.linked_account import AccountMetadata, AccountSnapshot
from app.validators.base import CredentialsModel, CredentialValidator, register_validator

logger = logging.getLogger(__name__)


class BankCredentials(CredentialsModel):
    bank_name: str = Field(min_length=1)
    account_number: str = Field(min_length=1)
    account_name: str = Field(min_length=1)
    routing_number: str | None = None


@register_validator(Provider.BANK)
class BankValidator(CredentialValidator):
    """Bank accounts are confirmed by the aggregator (Plaid) out of band; linking only records them."""

    credentials_model = BankCredentials
    label = "Bank"

    async def validate(self, credentials: BankCredentials) -> AccountSnapshot:
        if not self.config.bank_aggregator_configured:
            logger.error("Plaid API credentials not configured")
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                "Bank API credentials not configured. Please contact support.",
            )

        masked = mask_identifier(credentials.account_number)
        logger.info(f"Recording bank account {masked} at {credentials.bank_name} for verification")
        return AccountSnapshot(
            display_name=credentials.bank_name,
            masked_number=masked,
            currency="KES",
            status=AccountStatus.PENDING,
            metadata=AccountMetadata(
                platform=Provider.BANK.value,
                external_account_id=f"{credentials.bank_name.lower()}:{credentials.account_number}",
                has_balance_access=False,
                validated_with_real_api=False,
                extra={
                    "accountName": credentials.account_name,
                    "routingNumber": credentials.routing_number,
                    "aggregator": "plaid",
                    "aggregatorEnvironment": self.config.plaid_env,
                },
            ),
        )
