"""
Tests for the Voucher-B adapter.
"""
import hashlib
import json
from typing import Any, List

import httpx
import pytest

from voucher_hub.core.errors import ProviderNotConfiguredError
from voucher_hub.core.models import OutcomeStatus
from voucher_hub.integrations.credentials import StaticCredentialSource
from voucher_hub.integrations.voucher_b import VoucherBAdapter

CREDENTIALS = {"voucher_b.member_code": "M1001", "voucher_b.secret": "s3cret"}


def make_adapter(handler: Any, credentials: dict = CREDENTIALS) -> VoucherBAdapter:
    return VoucherBAdapter(
        StaticCredentialSource(credentials),
        "https://voucher-b.test",
        max_attempts=1,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )


def respond(payload: dict) -> Any:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    return handler


class TestVoucherBAdapter:
    """Test suite for VoucherBAdapter."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_is_signed(self) -> None:
        """Test request path, body fields and signature."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "pending", "message": "Diproses", "trx_id": "T-9"})

        result = await make_adapter(handler).purchase("REF77", "FF70", "12345678", "2001")

        assert result.status is OutcomeStatus.PENDING
        assert result.provider_transaction_id == "T-9"
        assert seen[0].url.path == "/v1/transaksi"
        body = json.loads(seen[0].content)
        assert body == {
            "ref_id": "REF77",
            "produk": "FF70",
            "tujuan": "12345678",
            "server_id": "2001",
            "member_code": "M1001",
            "signature": hashlib.md5(b"M1001:s3cret:REF77").hexdigest(),
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        result = await make_adapter(
            respond({"status": "sukses", "message": "Berhasil", "sn": "SN-777", "trx_id": "T-1"})
        ).purchase("REF1", "FF70", "123")

        assert result.status is OutcomeStatus.SUKSES
        assert result.is_success is True
        assert result.serial_number == "SN-777"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_reason_taken_from_sn(self) -> None:
        """Test that a gagal reason carried in sn is normalized into message."""
        result = await make_adapter(
            respond({"status": "gagal", "message": "", "sn": "ID tujuan salah"})
        ).purchase("REF1", "FF70", "123")

        assert result.status is OutcomeStatus.GAGAL
        assert result.is_success is False
        assert result.message == "ID tujuan salah"
        assert result.serial_number is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provider_error_status(self) -> None:
        result = await make_adapter(
            respond({"status": "error", "error_msg": "signature invalid"})
        ).purchase("REF1", "FF70", "123")

        assert result.status is OutcomeStatus.ERROR
        assert result.is_success is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_status_is_error(self) -> None:
        result = await make_adapter(respond({"status": "weird"})).purchase("REF1", "FF70", "123")

        assert result.status is OutcomeStatus.ERROR

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        """Test that missing credentials raise before any request."""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            await make_adapter(handler, credentials={}).purchase("REF1", "FF70", "123")

        assert exc_info.value.missing == ["member_code", "secret"]
        assert seen == []
