"""
Transaction PIN verification.

PIN hashes live in the settings store under ``pin_hash.<account_id>`` as
bcrypt hashes (``$2b$...``).
"""
import bcrypt
import structlog

from voucher_hub.core.models import PinVerification
from voucher_hub.integrations.credentials import PIN_HASH_PREFIX, CredentialSource

logger = structlog.get_logger(__name__)


def hash_pin(pin: str) -> str:
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_pin(pin: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash; treat as a mismatch.
        logger.warning("pin_hash_malformed")
        return False


class SettingsPinVerifier:
    """Verifies PINs against hashes held in the settings store."""

    def __init__(self, credentials: CredentialSource):
        self.credentials = credentials

    async def verify(self, account_id: str, pin: str) -> PinVerification:
        if not pin or not pin.isdigit() or len(pin) != 6:
            return PinVerification(valid=False, message="PIN must be 6 digits.")

        stored = await self.credentials.get(f"{PIN_HASH_PREFIX}{account_id}")
        if stored is None:
            logger.info("pin_not_configured", account_id=account_id)
            return PinVerification(valid=False, message="Account does not have a PIN configured.")

        if not check_pin(pin, stored):
            logger.warning("pin_rejected", account_id=account_id)
            return PinVerification(valid=False, message="Invalid PIN.")

        return PinVerification(valid=True, message="PIN verified successfully.")
