"""
Shared business codes used across layers (Domain/Application/API).

This package exposes BusinessCode at `shared.codes` and keeps
payment-specific codes under `shared.codes.payment_codes`. The HTTP mapping
lives here as well so the exception handlers and the idempotency store render
the same status for the same failure.
"""
from enum import IntEnum

from .payment_codes import PaymentCode


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    NOT_FOUND = 20006  # Generic resource not found
    DOMAIN_VIOLATION = 20010
    CONCURRENCY_CONFLICT = 20011
    IDEMPOTENCY_CONFLICT = 20012
    IDEMPOTENCY_IN_PROGRESS = 20013

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # Rate limiting (5xxxx)
    TOO_MANY_REQUESTS = 50001


_HTTP_STATUS = {
    BusinessCode.PARAM_ERROR: 400,
    BusinessCode.PARAM_VALIDATION_ERROR: 422,
    BusinessCode.NOT_FOUND: 404,
    BusinessCode.DOMAIN_VIOLATION: 409,
    BusinessCode.CONCURRENCY_CONFLICT: 409,
    BusinessCode.IDEMPOTENCY_CONFLICT: 422,
    BusinessCode.IDEMPOTENCY_IN_PROGRESS: 409,
    BusinessCode.SYSTEM_ERROR: 500,
    BusinessCode.SERVICE_UNAVAILABLE: 503,
    BusinessCode.TOO_MANY_REQUESTS: 429,
    PaymentCode.PROVIDER_ERROR: 402,
    PaymentCode.PROVIDER_RECOVERABLE: 503,
    PaymentCode.SIGNATURE_ERROR: 400,
    PaymentCode.TIMEOUT: 504,
    PaymentCode.UNKNOWN_PROVIDER: 404,
}


def http_status_for(code: int) -> int:
    """Map a business/payment code to an HTTP status (default 400)."""
    for enum_cls in (BusinessCode, PaymentCode):
        try:
            member = enum_cls(code)
        except ValueError:
            continue
        return _HTTP_STATUS.get(member, 400)
    return 400


__all__ = ["BusinessCode", "PaymentCode", "http_status_for"]
