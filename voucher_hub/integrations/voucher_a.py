"""
Voucher-A provider adapter.

POST /v1/transaction with ``sign = md5(username + api_key + ref_id)``. The
response carries the outcome under ``data`` with a capitalized status
vocabulary (Sukses / Pending / Gagal).
"""
import hashlib
from typing import Any, Dict, Optional

from voucher_hub.core.errors import ProviderNotConfiguredError
from voucher_hub.core.models import OutcomeEnvelope, OutcomeStatus, Provider
from voucher_hub.integrations import credentials as keys
from voucher_hub.integrations.base import ProviderAdapter

_STATUS_MAP = {
    "sukses": OutcomeStatus.SUKSES,
    "pending": OutcomeStatus.PENDING,
    "gagal": OutcomeStatus.GAGAL,
}


def sign(username: str, api_key: str, ref_id: str) -> str:
    return hashlib.md5(f"{username}{api_key}{ref_id}".encode("utf-8")).hexdigest()


class VoucherAAdapter(ProviderAdapter):
    provider = Provider.VOUCHER_A
    purchase_path = "/v1/transaction"

    def __init__(self, *args: Any, testing: bool = False, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.testing = testing

    async def build_payload(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str],
    ) -> Dict[str, Any]:
        username = await self.credentials.get(keys.VOUCHER_A_USERNAME)
        api_key = await self.credentials.get(keys.VOUCHER_A_API_KEY)
        missing = [
            name
            for name, value in (("username", username), ("api_key", api_key))
            if not value
        ]
        if missing:
            raise ProviderNotConfiguredError(self.provider.display_name, missing)

        # Voucher-A has no separate server field; game ids travel concatenated.
        customer_no = f"{destination}{server_id}" if server_id else destination
        return {
            "username": username,
            "buyer_sku_code": product_code,
            "customer_no": customer_no,
            "ref_id": ref_id,
            "sign": sign(username, api_key, ref_id),
            "testing": self.testing,
        }

    def parse_body(self, body: Any) -> OutcomeEnvelope:
        data = body["data"]
        if not isinstance(data, dict):
            raise TypeError("data is not an object")

        raw_status = str(data.get("status", "")).strip().lower()
        status = _STATUS_MAP.get(raw_status)
        if status is None:
            return OutcomeEnvelope.error(
                f"Error: unknown Voucher-A status {data.get('status')!r}"
            )

        return OutcomeEnvelope(
            is_success=status is not OutcomeStatus.GAGAL,
            status=status,
            message=data.get("message"),
            serial_number=data.get("sn") or None,
            provider_transaction_id=data.get("trx_id") or None,
        )

    def error_message(self, body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        data = body.get("data")
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        if body.get("message"):
            return str(body["message"])
        return None
