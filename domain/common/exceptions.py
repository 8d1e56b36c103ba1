"""领域层业务异常定义，供领域、应用与基础设施使用。

异常分类：
- DomainValidationException: 输入不合法，在触碰聚合之前拒绝
- DomainViolationException: 非法状态转换或业务规则违反，必须显式暴露
- ConcurrencyConflictException: 乐观锁版本冲突，由调用方重新加载后重试
- Provider*Error: 支付渠道调用失败（瞬时 / 永久 / 结果未知）
- Idempotency*Exception: 幂等键冲突或仍在处理中
- SignatureInvalidException: Webhook 签名校验失败

核心（core）层仅负责全局映射与异常处理，领域层不反向依赖核心层。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode, PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        # 变更失败时由应用层附上聚合的权威状态（视图字典）
        self.aggregate: Optional[dict] = None
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class DomainViolationException(BusinessException):
    """非法状态转换：聚合保持不变"""

    def __init__(
        self,
        message: str,
        *,
        aggregate_type: str,
        current_state: str,
        trigger: str,
        details: dict | None = None,
    ):
        full_details = {
            "aggregate_type": aggregate_type,
            "current_state": current_state,
            "trigger": trigger,
        }
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.DOMAIN_VIOLATION,
            message=message,
            error_type="DomainViolation",
            details=full_details,
            field="status",
        )
        self.current_state = current_state
        self.trigger = trigger


class RefundExceedsRefundableException(DomainViolationException):
    """退款金额超过剩余可退金额"""

    def __init__(self, requested: Decimal, refundable: Decimal, *, current_state: str):
        super().__init__(
            f"Refund amount {requested} exceeds refundable amount {refundable}",
            aggregate_type="payment",
            current_state=current_state,
            trigger="refund_requested",
            details={"requested": str(requested), "refundable": str(refundable)},
        )
        self.field = "amount"


class ConcurrencyConflictException(BusinessException):
    """乐观锁冲突：持久化时版本号不匹配"""

    def __init__(self, aggregate_type: str, aggregate_id: str, expected_version: int):
        super().__init__(
            code=BusinessCode.CONCURRENCY_CONFLICT,
            message=f"{aggregate_type} {aggregate_id} was modified concurrently",
            error_type="ConcurrencyConflict",
            details={
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
                "expected_version": expected_version,
            },
        )


class AggregateNotFoundException(BusinessException):
    def __init__(self, aggregate_type: str, identifier: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{aggregate_type} not found: {identifier}",
            error_type=f"{aggregate_type.capitalize()}NotFound",
            details={"id": identifier},
        )


class IdempotencyConflictException(BusinessException):
    """同一幂等键携带了不同的请求体"""

    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.IDEMPOTENCY_CONFLICT,
            message="Idempotency key was already used with a different request",
            error_type="IdempotencyConflict",
            details={"idempotency_key": key},
        )


class IdempotencyInProgressException(BusinessException):
    """同一幂等键的首个请求尚未提交结果，调用方应稍后重试"""

    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.IDEMPOTENCY_IN_PROGRESS,
            message="A request with this idempotency key is still being processed",
            error_type="IdempotencyInProgress",
            details={"idempotency_key": key},
        )


class ProviderError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "ProviderError",
        provider_code: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(code=code, message=message, error_type=error_type, details=full_details)
        self.provider = provider
        self.provider_code = provider_code


class ProviderTransientError(ProviderError):
    """网络/超时/限流：重试可能成功"""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="ProviderTransientError",
            provider_code=provider_code,
            details=details,
        )


class ProviderPermanentError(ProviderError):
    """拒付/请求非法：重试不会改变结果"""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="ProviderPermanentError",
            provider_code=provider_code,
            details=details,
        )


class ProviderAmbiguousError(ProviderError):
    """变更类调用超时：渠道侧可能已经成功，需要通过查询对账"""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            code=PaymentCode.TIMEOUT,
            error_type="ProviderAmbiguousError",
            details=details,
        )


class SignatureInvalidException(BusinessException):
    def __init__(self, message: str, *, provider: str):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="SignatureInvalid",
            details={"provider": provider},
        )
        self.provider = provider


class UnknownProviderException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.UNKNOWN_PROVIDER,
            message=f"Unsupported payment provider: {provider}",
            error_type="UnknownProvider",
            details={"provider": provider},
            field="provider",
        )
