"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    UNKNOWN_PROVIDER = 60005


# Provider→internal status mapping. Internal vocabulary:
# pending / processing / requires_action / succeeded / failed / canceled
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "pending",
        "requires_confirmation": "pending",
        "requires_action": "requires_action",
        "processing": "processing",
        "requires_capture": "processing",
        "succeeded": "succeeded",
        "canceled": "canceled",
    },
    "paystack": {
        # Per transaction.status
        "abandoned": "pending",
        "ongoing": "processing",
        "pending": "processing",
        "processing": "processing",
        "queued": "processing",
        "send_otp": "requires_action",
        "success": "succeeded",
        "failed": "failed",
        "reversed": "canceled",
    },
}
