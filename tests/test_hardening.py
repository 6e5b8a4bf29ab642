import pytest

from stakereg.core.hardening import (
    CryptoUtils,
    InputValidationError,
    InvalidWithdrawalAddress,
    InvariantChecker,
    InvariantViolation,
    RegistryError,
    Validators,
)


class TestValidateAddress:

    def test_normalizes_case_and_whitespace(self):
        result = Validators.validate_address("  0x" + "AB" * 20 + "\x00")
        assert result.is_valid
        assert result.sanitized_value == "0x" + "ab" * 20

    def test_accepts_raw_bytes(self):
        assert Validators.validate_address(b"\x11" * 20).sanitized_value == "0x" + "11" * 20

    @pytest.mark.parametrize(
        "value",
        ["0x1234", "ab" * 21, "0x" + "zz" * 20, "0x" + "00" * 20, b"\x01" * 19, 42, None],
    )
    def test_rejects(self, value):
        result = Validators.validate_address(value, "owner")
        assert not result.is_valid
        assert result.errors[0].field == "owner"


class TestValidateAmount:

    def test_bounds(self):
        assert Validators.validate_amount(5, max_value=5).is_valid
        assert not Validators.validate_amount(6, max_value=5).is_valid
        assert not Validators.validate_amount(-1).is_valid

    @pytest.mark.parametrize("value", [True, 1.0, "1"])
    def test_rejects_non_integers(self, value):
        assert not Validators.validate_amount(value).is_valid


class TestUnwrap:

    def test_returns_sanitized_value(self):
        assert Validators.validate_amount(7).unwrap() == 7

    def test_raises_input_validation_error_by_default(self):
        with pytest.raises(InputValidationError) as exc_info:
            Validators.validate_amount(-3, "value").unwrap(value=-3)
        assert "value: Must be >= 0" in str(exc_info.value)
        assert exc_info.value.details == {"value": -3}

    def test_raises_requested_class(self):
        with pytest.raises(InvalidWithdrawalAddress) as exc_info:
            Validators.validate_address("0x12").unwrap(InvalidWithdrawalAddress, withdrawal_address="0x12")
        assert exc_info.value.code == "INVALID_WITHDRAWAL_ADDRESS"


def test_error_to_dict_hexes_bytes():
    err = RegistryError("bad", root=b"\x01\x02", leaf_index=3)
    assert err.to_dict() == {
        "error": "RegistryError",
        "code": "REGISTRY_ERROR",
        "message": "bad",
        "details": {"root": "0102", "leaf_index": 3},
    }


def test_secure_compare():
    assert CryptoUtils.secure_compare(b"domain", b"domain")
    assert not CryptoUtils.secure_compare(b"domain", b"domaiN")


def test_invariant_checker():
    InvariantChecker.check_conservation("payout", 10, 10)
    with pytest.raises(InvariantViolation):
        InvariantChecker.check_conservation("payout", 10, 9)
    with pytest.raises(InvariantViolation):
        InvariantChecker.check_balance_sufficient(1, 2, "escrow")
    with pytest.raises(InvariantViolation):
        InvariantChecker.check_non_negative("deposit", -1)
