"""
Tests for transaction PIN hashing and verification.
"""
import pytest

from voucher_hub.integrations.credentials import StaticCredentialSource
from voucher_hub.integrations.pin import SettingsPinVerifier, check_pin, hash_pin


class TestPinHashing:
    @pytest.mark.unit
    def test_hash_is_bcrypt(self) -> None:
        stored = hash_pin("123456")

        assert stored.startswith("$2")
        assert "123456" not in stored
        assert hash_pin("123456") != stored  # fresh salt each time

    @pytest.mark.unit
    def test_check_pin(self) -> None:
        stored = hash_pin("482913")

        assert check_pin("482913", stored) is True
        assert check_pin("482914", stored) is False

    @pytest.mark.unit
    def test_legacy_sha256_value_is_rejected(self) -> None:
        legacy = "deadbeef$" + "0" * 64

        assert check_pin("123456", legacy) is False


class TestSettingsPinVerifier:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_pin(self) -> None:
        verifier = SettingsPinVerifier(
            StaticCredentialSource({"pin_hash.admin": hash_pin("123456")})
        )

        result = await verifier.verify("admin", "123456")

        assert result.valid is True
        assert result.message == "PIN verified successfully."

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_pin(self) -> None:
        verifier = SettingsPinVerifier(
            StaticCredentialSource({"pin_hash.admin": hash_pin("123456")})
        )

        result = await verifier.verify("admin", "654321")

        assert result.valid is False
        assert result.message == "Invalid PIN."

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_account_without_pin(self) -> None:
        verifier = SettingsPinVerifier(StaticCredentialSource({}))

        result = await verifier.verify("ops", "123456")

        assert result.valid is False
        assert result.message == "Account does not have a PIN configured."

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_pin_is_rejected_before_lookup(self) -> None:
        verifier = SettingsPinVerifier(StaticCredentialSource({}))

        result = await verifier.verify("admin", "12345")

        assert result.valid is False
        assert result.message == "PIN must be 6 digits."
