"""
Tests for logging processors.
"""
import pytest

from voucher_hub.monitoring.logging import ServiceContext, redact_secrets


class TestLoggingProcessors:
    @pytest.mark.unit
    def test_secrets_are_redacted(self) -> None:
        event = {"event": "provider_request", "sign": "abc", "bot_token": "123:x", "ref_id": "VH1"}

        result = redact_secrets(None, "info", event)

        assert result["sign"] == "***"
        assert result["bot_token"] == "***"
        assert result["ref_id"] == "VH1"

    @pytest.mark.unit
    def test_service_context(self) -> None:
        result = ServiceContext("voucher-hub", "test")(None, "info", {"event": "x"})

        assert result["service"] == "voucher-hub"
        assert result["env"] == "test"
