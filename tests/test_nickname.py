"""
Tests for the game nickname inquiry adapter.
"""
import json
from typing import Any, List
from urllib.parse import quote

import httpx
import pytest

from voucher_hub.core.errors import OrderValidationError, ProviderNotConfiguredError
from voucher_hub.integrations.credentials import StaticCredentialSource
from voucher_hub.integrations.nickname import (
    GameTitle,
    NicknameInquiryAdapter,
    extract_nickname,
)

ENDPOINT = {"nickname_inquiry.url": "https://storefront.test/initPayment.action"}


def make_adapter(handler: Any, credentials: dict = ENDPOINT) -> NicknameInquiryAdapter:
    return NicknameInquiryAdapter(
        StaticCredentialSource(credentials),
        max_attempts=1,
        retry_base_delay=0,
        transport=httpx.MockTransport(handler),
    )


def encoded_result(payload: dict) -> str:
    return quote(json.dumps(payload))


class TestExtractNickname:
    @pytest.mark.unit
    def test_free_fire_prefers_result_role(self) -> None:
        body = {
            "result": encoded_result({"roles": [{"role": "Sniper%20King"}]}),
            "confirmationFields": {"username": "someone-else"},
        }

        assert extract_nickname(body, prefer_username=False) == "Sniper King"

    @pytest.mark.unit
    def test_mobile_legends_prefers_confirmation_username(self) -> None:
        body = {
            "result": encoded_result({"username": "from-result"}),
            "confirmationFields": {"username": "Budi%20ML"},
        }

        assert extract_nickname(body, prefer_username=True) == "Budi ML"

    @pytest.mark.unit
    def test_unparseable_result_falls_through(self) -> None:
        body = {"result": "not json", "confirmationFields": {"roles": [{"role": "Fallback"}]}}

        assert extract_nickname(body, prefer_username=False) == "Fallback"
        assert extract_nickname({"success": True}, prefer_username=False) is None


class TestNicknameInquiryAdapter:
    """Test suite for NicknameInquiryAdapter."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_free_fire_request_and_nickname(self) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"success": True, "result": encoded_result({"roles": [{"role": "Sniper"}]})},
            )

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, " 123456789 ")

        assert result.is_success is True
        assert result.nickname == "Sniper"
        assert result.message == "Nickname inquiry successful."
        body = json.loads(seen[0].content)
        assert str(seen[0].url) == ENDPOINT["nickname_inquiry.url"]
        assert body["voucherTypeName"] == "FREEFIRE"
        assert body["voucherPricePoint.id"] == 8120
        assert body["user.userId"] == "123456789"
        assert body["user.zoneId"] == ""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mobile_legends_sends_zone(self) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "confirmationFields": {"username": "Budi"}})

        result = await make_adapter(handler).inquire(GameTitle.MOBILE_LEGENDS, "12345678", "2001")

        assert result.nickname == "Budi"
        body = json.loads(seen[0].content)
        assert body["voucherTypeName"] == "MOBILE_LEGENDS"
        assert body["user.zoneId"] == "2001"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_account_found_without_nickname(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True})

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, "123456789")

        assert result.is_success is True
        assert result.nickname is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "RESULT_CODE": "10001"})

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, "123456789")

        assert result.is_success is False
        assert result.message.startswith("Too many attempts")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_storefront_rejection(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "errorMsg": "Invalid user"})

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, "123456789")

        assert result.is_success is False
        assert result.message == "Inquiry failed: Invalid user"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, json={"message": "upstream down"})

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, "123456789")

        assert result.is_success is False
        assert result.message == "Error: upstream down"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error_is_reported(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await make_adapter(handler).inquire(GameTitle.FREE_FIRE, "123456789")

        assert result.is_success is False
        assert "request failed" in result.message

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_endpoint_raises_before_network(self) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            await make_adapter(handler, credentials={}).inquire(GameTitle.FREE_FIRE, "123456789")

        assert exc_info.value.missing == ["url"]
        assert seen == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_ids(self) -> None:
        adapter = make_adapter(lambda request: httpx.Response(200, json={}))

        with pytest.raises(OrderValidationError):
            await adapter.inquire(GameTitle.FREE_FIRE, "1234")
        with pytest.raises(OrderValidationError):
            await adapter.inquire(GameTitle.MOBILE_LEGENDS, "12345678", "  ")
