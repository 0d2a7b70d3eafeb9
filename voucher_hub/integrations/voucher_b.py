"""
Voucher-B provider adapter.

POST /v1/transaksi with ``signature = md5("member_code:secret:ref_id")``.
Statuses arrive lowercase (sukses / pending / gagal / error). On ``gagal`` the
provider often puts the failure reason in ``sn`` rather than ``message``.
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
    "error": OutcomeStatus.ERROR,
}


def sign(member_code: str, secret: str, ref_id: str) -> str:
    return hashlib.md5(f"{member_code}:{secret}:{ref_id}".encode("utf-8")).hexdigest()


class VoucherBAdapter(ProviderAdapter):
    provider = Provider.VOUCHER_B
    purchase_path = "/v1/transaksi"

    async def build_payload(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str],
    ) -> Dict[str, Any]:
        member_code = await self.credentials.get(keys.VOUCHER_B_MEMBER_CODE)
        secret = await self.credentials.get(keys.VOUCHER_B_SECRET)
        missing = [
            name
            for name, value in (("member_code", member_code), ("secret", secret))
            if not value
        ]
        if missing:
            raise ProviderNotConfiguredError(self.provider.display_name, missing)

        return {
            "ref_id": ref_id,
            "produk": product_code,
            "tujuan": destination,
            "server_id": server_id or "",
            "member_code": member_code,
            "signature": sign(member_code, secret, ref_id),
        }

    def parse_body(self, body: Any) -> OutcomeEnvelope:
        raw_status = str(body["status"]).strip().lower()
        status = _STATUS_MAP.get(raw_status)
        if status is None:
            return OutcomeEnvelope.error(
                f"Error: unknown Voucher-B status {body.get('status')!r}"
            )

        message = body.get("message") or body.get("error_msg") or None
        serial_number = body.get("sn") or None
        if status in (OutcomeStatus.GAGAL, OutcomeStatus.ERROR):
            message = message or serial_number
            serial_number = None

        return OutcomeEnvelope(
            is_success=status in (OutcomeStatus.SUKSES, OutcomeStatus.PENDING),
            status=status,
            message=message,
            serial_number=serial_number,
            provider_transaction_id=body.get("trx_id") or None,
        )

    def error_message(self, body: Any) -> Optional[str]:
        if isinstance(body, dict):
            detail = body.get("message") or body.get("error_msg")
            if detail:
                return str(detail)
        return None
