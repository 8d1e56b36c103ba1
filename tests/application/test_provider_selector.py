import pytest

from application.services.provider_selector import ProviderSelector
from core.settings import SelectionSettings
from domain.common.exceptions import UnknownProviderException


@pytest.fixture
def selector() -> ProviderSelector:
    return ProviderSelector(["stripe", "paystack"], "stripe", SelectionSettings())


def test_rule_order(selector):
    assert selector.select(currency="NGN", region="US", preferred="stripe") == "stripe"
    assert selector.select(currency="NGN", region="US") == "paystack"
    assert selector.select(currency="USD", region="gh") == "paystack"
    assert selector.select(currency="USD", region="US") == "stripe"
    assert selector.select(currency="EUR") == "stripe"


def test_identical_inputs_select_identical_provider(selector):
    picks = {selector.select(currency="USD", region="US") for _ in range(50)}
    assert picks == {"stripe"}


def test_unknown_preference_is_rejected(selector):
    with pytest.raises(UnknownProviderException):
        selector.select(currency="USD", preferred="alipay")


def test_affinity_to_unconfigured_provider_falls_through():
    only_stripe = ProviderSelector(["stripe"], "stripe", SelectionSettings())
    assert only_stripe.select(currency="NGN", region="NG") == "stripe"


def test_default_must_be_available():
    with pytest.raises(UnknownProviderException):
        ProviderSelector(["paystack"], "stripe")
