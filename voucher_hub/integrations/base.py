"""
Shared plumbing for provider adapters.

Implements:
- Exponential backoff for transient transport errors (same ref_id every attempt)
- Circuit breaker per adapter
- Error classification into an error ``OutcomeEnvelope``

Concrete adapters only build the signed payload and interpret the decoded
response body.
"""
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from voucher_hub.core.models import OutcomeEnvelope, Provider
from voucher_hub.integrations.credentials import CredentialSource
from voucher_hub.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ProviderErrorType(Enum):
    """Classification of provider call failures."""

    TRANSPORT = "transport"  # Retry these
    HTTP_STATUS = "http_status"
    DECODE = "decode"
    CIRCUIT_OPEN = "circuit_open"


class ProviderCallError(Exception):
    """A provider call that did not produce a usable response."""

    def __init__(
        self,
        message: str,
        error_type: ProviderErrorType,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error
        self.status_code = status_code

    @property
    def is_outage(self) -> bool:
        """Failures that count against the circuit breaker."""
        if self.error_type is ProviderErrorType.TRANSPORT:
            return True
        return self.error_type is ProviderErrorType.HTTP_STATUS and (self.status_code or 0) >= 500


def is_transient(error: BaseException) -> bool:
    return (
        isinstance(error, ProviderCallError)
        and error.error_type is ProviderErrorType.TRANSPORT
    )


class CircuitBreaker:
    """
    Circuit breaker for provider API calls.

    Stops sending requests to a provider after repeated failures and tries
    again once ``timeout`` seconds have passed.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout: float = 60,
        success_threshold: int = 1,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Label used for logs and metrics
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func`` with circuit breaker protection.

        Raises:
            ProviderCallError: If the circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open", provider=self.name)
            else:
                raise ProviderCallError(
                    "Circuit breaker is open", ProviderErrorType.CIRCUIT_OPEN
                )

        try:
            result = await func(*args, **kwargs)
        except ProviderCallError as e:
            if e.is_outage:
                self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed", provider=self.name)

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                provider=self.name,
                failure_count=self.failure_count,
            )

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(self.name, state)


class ProviderAdapter(ABC):
    """
    Base class for upstream provider adapters.

    Subclasses set ``provider`` and ``purchase_path`` and implement
    ``build_payload`` and ``parse_body``. ``purchase`` is used both for the
    initial order and for every status re-query of the same ref_id.
    """

    provider: Provider
    purchase_path: str

    def __init__(
        self,
        credentials: CredentialSource,
        base_url: str,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.provider.value)
        self.transport = transport

    @abstractmethod
    async def build_payload(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str],
    ) -> Dict[str, Any]:
        """
        Build the signed request body.

        Raises:
            ProviderNotConfiguredError: If credentials are missing
        """
        raise NotImplementedError

    @abstractmethod
    def parse_body(self, body: Any) -> OutcomeEnvelope:
        """Map a decoded 2xx response body to an envelope."""
        raise NotImplementedError

    def error_message(self, body: Any) -> Optional[str]:
        """Best-effort error text from a non-2xx response body."""
        return None

    async def purchase(
        self,
        ref_id: str,
        product_code: str,
        destination: str,
        server_id: Optional[str] = None,
    ) -> OutcomeEnvelope:
        """
        Submit (or re-query) an order keyed by ``ref_id``.

        Args:
            ref_id: Transaction id, sent unchanged on every call
            product_code: Provider product code
            destination: Customer number
            server_id: Optional game server id

        Returns:
            OutcomeEnvelope: Normalized outcome; transport and decode failures
            come back as ``status=error``

        Raises:
            ProviderNotConfiguredError: If credentials are missing (no request is sent)
        """
        payload = await self.build_payload(ref_id, product_code, destination, server_id)

        logger.info(
            "provider_request",
            provider=self.provider.value,
            ref_id=ref_id,
            product_code=product_code,
        )

        start = time.monotonic()
        try:
            body = await self.circuit_breaker.call(self._post_with_retry, payload)
            envelope = self.parse_body(body)
        except ProviderCallError as e:
            envelope = self._error_envelope(ref_id, e)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            envelope = self._error_envelope(
                ref_id,
                ProviderCallError(
                    f"Unexpected response structure from {self.provider.display_name}",
                    ProviderErrorType.DECODE,
                    e,
                ),
            )
        duration = time.monotonic() - start

        metrics.record_provider_call(self.provider.value, envelope.status.value, duration)
        logger.info(
            "provider_response",
            provider=self.provider.value,
            ref_id=ref_id,
            status=envelope.status.value,
            duration_seconds=round(duration, 3),
        )
        return envelope

    async def _post_with_retry(self, payload: Dict[str, Any]) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_base_delay, max=16),
            reraise=True,
        ):
            with attempt:
                return await self._post(payload)

    async def _post(self, payload: Dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(self.purchase_path, json=payload)
        except httpx.TransportError as e:
            logger.warning(
                "provider_transport_error",
                provider=self.provider.value,
                ref_id=payload.get("ref_id"),
                error=str(e),
            )
            raise ProviderCallError(
                f"{self.provider.display_name} request failed: {e}",
                ProviderErrorType.TRANSPORT,
                e,
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            if response.is_success:
                raise ProviderCallError(
                    f"{self.provider.display_name} returned a non-JSON response",
                    ProviderErrorType.DECODE,
                    e,
                ) from e
            body = None

        if not response.is_success:
            detail = self.error_message(body) or (
                f"{self.provider.display_name} API request failed: "
                f"{response.status_code} {response.reason_phrase}"
            )
            raise ProviderCallError(
                detail, ProviderErrorType.HTTP_STATUS, status_code=response.status_code
            )

        return body

    def _error_envelope(self, ref_id: str, error: ProviderCallError) -> OutcomeEnvelope:
        metrics.record_provider_error(self.provider.value, error.error_type.value)
        logger.error(
            "provider_call_failed",
            provider=self.provider.value,
            ref_id=ref_id,
            error_type=error.error_type.value,
            error_message=str(error),
        )
        return OutcomeEnvelope.error(f"Error: {error}")
