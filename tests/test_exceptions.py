"""Tests for the exception hierarchy."""

import pytest

from throttler.exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    StoreUnavailableError,
    ThrottlerException,
)


class TestExceptions:
    """Tests for exception attributes and hierarchy."""

    @pytest.mark.parametrize(
        "exc",
        [
            ConfigurationError(),
            InvalidArgumentError("num_tokens", "bad"),
            StoreUnavailableError("hgetall"),
        ],
    )
    def test_all_derive_from_base(self, exc):
        assert isinstance(exc, ThrottlerException)

    def test_store_unavailable_message(self):
        exc = StoreUnavailableError("hset", "rate_limiter:m")
        assert exc.message == "Store operation 'hset' failed for key rate_limiter:m"
        assert exc.operation == "hset"

    def test_store_unavailable_detail_overrides_message(self):
        exc = StoreUnavailableError("eval", "k", detail="NOSCRIPT")
        assert str(exc) == "NOSCRIPT"

    def test_store_unavailable_is_not_value_error(self):
        assert not isinstance(StoreUnavailableError("hset"), ValueError)

    def test_caller_errors_are_value_errors(self):
        assert isinstance(ConfigurationError("x"), ValueError)
        assert isinstance(InvalidArgumentError("meter_id", "x"), ValueError)
