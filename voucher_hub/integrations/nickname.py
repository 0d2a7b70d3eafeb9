"""
Game account nickname inquiry.

Looks up the in-game nickname behind a Free Fire or Mobile Legends user id
before a top-up is placed, so the operator can confirm the destination. The
lookup posts a storefront ``initPayment`` request for a fixed price point;
nothing is purchased. The endpoint is read from the settings store under
``nickname_inquiry.url`` on every call, like provider credentials.
"""
import json
import random
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import unquote

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from voucher_hub.core.errors import OrderValidationError, ProviderNotConfiguredError
from voucher_hub.integrations import credentials as keys
from voucher_hub.integrations.base import (
    CircuitBreaker,
    ProviderCallError,
    ProviderErrorType,
    is_transient,
)
from voucher_hub.integrations.credentials import CredentialSource
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

SERVICE_NAME = "Nickname inquiry"
RATE_LIMITED_CODE = "10001"

# base64 of {"name":" ","dateofbirth":"","id_no":""}
_BLANK_PROFILE = "eyJuYW1lIjoiICIsImRhdGVvZmJpcnRoIjoiIiwiaWRfbm8iOiIifQ=="


class GameTitle(str, Enum):
    FREE_FIRE = "free_fire"
    MOBILE_LEGENDS = "mobile_legends"


@dataclass(frozen=True)
class PricePoint:
    voucher_type_name: str
    voucher_type_id: int
    gvt_id: int
    price_point_id: int
    price: float
    requires_zone: bool
    prefer_username: bool


PRICE_POINTS: Dict[GameTitle, PricePoint] = {
    GameTitle.FREE_FIRE: PricePoint(
        voucher_type_name="FREEFIRE",
        voucher_type_id=17,
        gvt_id=33,
        price_point_id=8120,
        price=50000.0,
        requires_zone=False,
        prefer_username=False,
    ),
    GameTitle.MOBILE_LEGENDS: PricePoint(
        voucher_type_name="MOBILE_LEGENDS",
        voucher_type_id=5,
        gvt_id=19,
        price_point_id=1471,
        price=84360.0,
        requires_zone=True,
        prefer_username=True,
    ),
}


@dataclass(frozen=True)
class NicknameInquiry:
    is_success: bool
    message: str
    nickname: Optional[str] = None
    raw_response: Any = None


def _nonce(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today:%Y/%m/%d}-{random.randrange(1000)}"


def _first_role(container: Any) -> Optional[str]:
    roles = container.get("roles") if isinstance(container, dict) else None
    if isinstance(roles, list) and roles and isinstance(roles[0], dict) and roles[0].get("role"):
        return unquote(str(roles[0]["role"]))
    return None


def _username(container: Any) -> Optional[str]:
    if isinstance(container, dict) and container.get("username"):
        return unquote(str(container["username"]))
    return None


def extract_nickname(body: Dict[str, Any], prefer_username: bool) -> Optional[str]:
    """
    Pull the nickname out of a successful storefront response.

    The storefront reports it either in ``result`` (a URL-encoded JSON string)
    or in ``confirmationFields``; each game fills a different one first.
    """
    result: Any = None
    if isinstance(body.get("result"), str):
        try:
            result = json.loads(unquote(body["result"]))
        except ValueError:
            logger.warning("nickname_result_unparseable")

    confirmation = body.get("confirmationFields")
    if prefer_username:
        candidates = (_username(confirmation), _username(result), _first_role(result))
    else:
        candidates = (
            _first_role(result),
            _username(result),
            _first_role(confirmation),
            _username(confirmation),
        )
    return next((name for name in candidates if name), None)


class NicknameInquiryAdapter:
    """Client for the storefront nickname lookup."""

    def __init__(
        self,
        credentials: CredentialSource,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.circuit_breaker = circuit_breaker or CircuitBreaker("nickname_inquiry")
        self.transport = transport

    def build_payload(self, game: GameTitle, user_id: str, zone_id: Optional[str]) -> Dict[str, Any]:
        point = PRICE_POINTS[game]
        return {
            "voucherPricePoint.id": point.price_point_id,
            "voucherPricePoint.price": point.price,
            "voucherPricePoint.variablePrice": 0,
            "n": _nonce(),
            "email": "",
            "userVariablePrice": 0,
            "order.data.profile": _BLANK_PROFILE,
            "user.userId": user_id,
            "user.zoneId": zone_id or "",
            "msisdn": "",
            "voucherTypeName": point.voucher_type_name,
            "shopLang": "id_ID",
            "voucherTypeId": point.voucher_type_id,
            "gvtId": point.gvt_id,
            "checkoutId": "",
            "affiliateTrackingId": "",
            "impactClickId": "",
            "anonymousId": "",
        }

    async def inquire(
        self, game: GameTitle, user_id: str, zone_id: Optional[str] = None
    ) -> NicknameInquiry:
        """
        Look up the nickname for a game account.

        Args:
            game: Which game the user id belongs to
            user_id: Game user id
            zone_id: Server/zone id; required for Mobile Legends

        Returns:
            NicknameInquiry: Unsuccessful lookups come back with
            ``is_success=False`` and a message rather than raising

        Raises:
            OrderValidationError: If the ids are malformed
            ProviderNotConfiguredError: If no endpoint is configured (no request is sent)
        """
        user_id = user_id.strip()
        zone_id = (zone_id or "").strip() or None
        point = PRICE_POINTS[game]
        if len(user_id) < 5:
            raise OrderValidationError("User ID must be at least 5 characters")
        if point.requires_zone and not zone_id:
            raise OrderValidationError("Zone ID is required")

        url = await self.credentials.get(keys.NICKNAME_INQUIRY_URL)
        if not url:
            raise ProviderNotConfiguredError(SERVICE_NAME, ["url"])

        payload = self.build_payload(game, user_id, zone_id)
        log = logger.bind(game=game.value, user_id=user_id)
        log.info("nickname_inquiry_request")

        try:
            status_code, body = await self.circuit_breaker.call(self._post_with_retry, url, payload)
        except ProviderCallError as e:
            metrics.record_provider_error("nickname_inquiry", e.error_type.value)
            log.error("nickname_inquiry_failed", error_type=e.error_type.value, error=str(e))
            return NicknameInquiry(is_success=False, message=f"Error: {e}")

        inquiry = self.parse_body(status_code, body, point)
        log.info("nickname_inquiry_response", is_success=inquiry.is_success, found=bool(inquiry.nickname))
        return inquiry

    @staticmethod
    def parse_body(status_code: int, body: Any, point: PricePoint) -> NicknameInquiry:
        if not isinstance(body, dict):
            return NicknameInquiry(
                is_success=False,
                message=f"Error: unexpected nickname inquiry response ({status_code})",
                raw_response=body,
            )

        if status_code >= 400:
            detail = body.get("errorMsg") or body.get("message") or f"request failed: {status_code}"
            return NicknameInquiry(is_success=False, message=f"Error: {detail}", raw_response=body)

        if RATE_LIMITED_CODE in (str(body.get("RESULT_CODE")), str(body.get("resultCode"))):
            return NicknameInquiry(
                is_success=False,
                message="Too many attempts to check nickname. Please wait a moment and try again.",
                raw_response=body,
            )

        if not body.get("success") or body.get("errorMsg"):
            detail = body.get("errorMsg") or body.get("message") or "Invalid User ID or unknown error."
            return NicknameInquiry(
                is_success=False, message=f"Inquiry failed: {detail}", raw_response=body
            )

        nickname = extract_nickname(body, point.prefer_username)
        if nickname is None:
            return NicknameInquiry(
                is_success=True,
                message="Account found, but the nickname is not available in the response.",
                raw_response=body,
            )
        return NicknameInquiry(
            is_success=True,
            nickname=nickname,
            message="Nickname inquiry successful.",
            raw_response=body,
        )

    async def _post_with_retry(self, url: str, payload: Dict[str, Any]) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=16),
            reraise=True,
        ):
            with attempt:
                return await self._post(url, payload)

    async def _post(self, url: str, payload: Dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
        except httpx.TransportError as e:
            raise ProviderCallError(
                f"{SERVICE_NAME} request failed: {e}", ProviderErrorType.TRANSPORT, e
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderCallError(
                f"{SERVICE_NAME} returned a non-JSON response",
                ProviderErrorType.DECODE,
                e,
                status_code=response.status_code,
            ) from e
        return response.status_code, body
