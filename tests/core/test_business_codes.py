import pytest

from shared.codes import BusinessCode, PaymentCode, http_status_for


def test_code_vocabulary():
    assert {c.name for c in BusinessCode} == {
        "SUCCESS",
        "PARAM_ERROR",
        "PARAM_VALIDATION_ERROR",
        "NOT_FOUND",
        "DOMAIN_VIOLATION",
        "CONCURRENCY_CONFLICT",
        "IDEMPOTENCY_CONFLICT",
        "IDEMPOTENCY_IN_PROGRESS",
        "SYSTEM_ERROR",
        "SERVICE_UNAVAILABLE",
        "TOO_MANY_REQUESTS",
    }
    assert {c.name for c in PaymentCode} == {
        "SUCCESS",
        "PROVIDER_ERROR",
        "PROVIDER_RECOVERABLE",
        "SIGNATURE_ERROR",
        "TIMEOUT",
        "UNKNOWN_PROVIDER",
    }


@pytest.mark.parametrize(
    "code, status",
    [
        (BusinessCode.PARAM_VALIDATION_ERROR, 422),
        (BusinessCode.NOT_FOUND, 404),
        (BusinessCode.DOMAIN_VIOLATION, 409),
        (BusinessCode.CONCURRENCY_CONFLICT, 409),
        (BusinessCode.IDEMPOTENCY_CONFLICT, 422),
        (BusinessCode.IDEMPOTENCY_IN_PROGRESS, 409),
        (BusinessCode.SYSTEM_ERROR, 500),
        (BusinessCode.TOO_MANY_REQUESTS, 429),
        (PaymentCode.PROVIDER_ERROR, 402),
        (PaymentCode.PROVIDER_RECOVERABLE, 503),
        (PaymentCode.SIGNATURE_ERROR, 400),
        (PaymentCode.TIMEOUT, 504),
        (PaymentCode.UNKNOWN_PROVIDER, 404),
    ],
)
def test_http_status_mapping(code, status):
    assert http_status_for(code) == status


def test_unknown_code_defaults_to_400():
    assert http_status_for(99999) == 400
