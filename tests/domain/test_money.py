from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.common.money import Money
from domain.payment.entity import Payment


def test_currency_is_normalized():
    assert Money.of("10.5", "usd") == Money(Decimal("10.50"), "USD")


@pytest.mark.parametrize(
    "amount,currency,minor",
    [("99.99", "USD", 9999), ("1500", "JPY", 1500), ("1.234", "KWD", 1234), ("0.01", "EUR", 1)],
)
def test_minor_units(amount, currency, minor):
    assert Money.of(amount, currency).to_minor_units() == minor


@pytest.mark.parametrize("amount,currency", [("10.001", "USD"), ("1.5", "JPY"), ("1.2345", "BHD")])
def test_precision_beyond_currency_exponent_is_rejected(amount, currency):
    with pytest.raises(DomainValidationException):
        Money.of(amount, currency)


@pytest.mark.parametrize("currency", ["US", "USDX", "12$", ""])
def test_invalid_currency_code(currency):
    with pytest.raises(DomainValidationException):
        Money.of("1", currency)


def test_arithmetic_requires_same_currency():
    assert Money.of("1.10", "USD") + Money.of("2.20", "USD") == Money.of("3.30", "USD")
    with pytest.raises(DomainValidationException):
        Money.of("1", "USD") + Money.of("1", "EUR")


def test_payment_rejects_non_positive_amount():
    with pytest.raises(DomainValidationException):
        Payment.create(user_id="u1", amount=Decimal("0"), currency="USD", provider="stripe")


def test_payment_rejects_oversized_metadata():
    with pytest.raises(DomainValidationException):
        Payment.create(
            user_id="u1",
            amount=Decimal("1.00"),
            currency="USD",
            provider="stripe",
            metadata={f"k{i}": i for i in range(51)},
        )
