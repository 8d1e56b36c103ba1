"""
金额值对象 - 不可变的 金额 + 币种
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union

from domain.common.exceptions import DomainValidationException


# ISO-4217 minor units, default 2
_ZERO_DECIMAL = {"JPY", "KRW", "VND", "CLP", "ISK", "UGX", "XAF", "XOF"}
_THREE_DECIMAL = {"BHD", "JOD", "KWD", "OMR", "TND"}


def currency_exponent(currency: str) -> int:
    """币种的最小单位精度"""
    code = currency.upper()
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def normalize_currency(currency: str) -> str:
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise DomainValidationException(f"Invalid currency code: {currency}", field="currency")
    return code


@dataclass(frozen=True)
class Money:
    """
    金额值对象

    业务规则：
    1. 币种必须是 3 位 ISO-4217 字母代码
    2. 小数位不能超过币种最小单位
    3. 只有相同币种可以相加减
    """

    amount: Decimal
    currency: str

    def __post_init__(self):
        currency = normalize_currency(self.currency)
        try:
            amount = Decimal(str(self.amount))
        except (InvalidOperation, ValueError):
            raise DomainValidationException(f"Invalid amount: {self.amount}", field="amount")
        if not amount.is_finite():
            raise DomainValidationException(f"Invalid amount: {self.amount}", field="amount")
        exponent = currency_exponent(currency)
        quantum = Decimal(1).scaleb(-exponent)
        if amount != amount.quantize(quantum):
            raise DomainValidationException(
                f"{currency} supports at most {exponent} decimal places: {amount}",
                field="amount",
            )
        object.__setattr__(self, "currency", currency)
        object.__setattr__(self, "amount", amount.quantize(quantum))

    @classmethod
    def of(cls, amount: Union[Decimal, str, int], currency: str) -> "Money":
        return cls(Decimal(str(amount)), currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(Decimal(0), currency)

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise DomainValidationException(
                f"Currency mismatch: {self.currency} vs {other.currency}",
                field="currency",
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def is_positive(self) -> bool:
        return self.amount > 0

    def to_minor_units(self) -> int:
        """转换为渠道使用的最小货币单位（分）"""
        return int(self.amount.scaleb(currency_exponent(self.currency)).to_integral_value())

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
