import logging

from pydantic import Field

from app.models.linked_account import AccountStatus, Provider
from app.schemas.linked_account import AccountMetadata, AccountSnapshot
from app.validators.base import (
    CredentialsModel,
    CredentialValidator,
    credential_fingerprint,
    mask_api_key,
    register_validator,
)

logger = logging.getLogger(__name__)


class ApiKeyCredentials(CredentialsModel):
    api_key: str = Field(min_length=1)


class ManualVerificationValidator(CredentialValidator):
    """Platforms with no usable validation API.

    Any non-empty key is accepted and the account waits for manual review.
    """

    credentials_model = ApiKeyCredentials

    async def validate(self, credentials: ApiKeyCredentials) -> AccountSnapshot:
        logger.info(f"{self.label} key {mask_api_key(credentials.api_key)} queued for manual verification")
        return AccountSnapshot(
            display_name=f"{self.label} Account",
            masked_number=f"****{credentials.api_key[-4:]}",
            currency="USD",
            status=AccountStatus.NEEDS_VERIFICATION,
            metadata=AccountMetadata(
                platform=self.provider.value,
                external_account_id=credential_fingerprint(credentials.api_key),
                masked_api_key=mask_api_key(credentials.api_key),
                requires_manual_verification=True,
                validated_with_real_api=False,
            ),
        )


@register_validator(Provider.ETORO)
class EToroValidator(ManualVerificationValidator):
    label = "eToro"


@register_validator(Provider.INTERACTIVE_BROKERS)
class InteractiveBrokersValidator(ManualVerificationValidator):
    label = "Interactive Brokers"
