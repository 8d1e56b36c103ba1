"""
Provider selection.

Rules are evaluated in a fixed order and the result is pinned on the payment or
subscription at creation time:

1. explicit caller preference
2. currency affinity
3. region affinity
4. configured default

Selection is a pure function of its inputs plus the configured maps, so the
same request always resolves to the same provider.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from core.logging_config import get_logger
from core.settings import SelectionSettings
from domain.common.exceptions import UnknownProviderException


logger = get_logger(__name__)


class ProviderSelector:
    def __init__(
        self,
        available: Iterable[str],
        default_provider: str,
        settings: Optional[SelectionSettings] = None,
    ) -> None:
        self._available = frozenset(p.lower() for p in available)
        self._default = default_provider.lower()
        settings = settings or SelectionSettings()
        self._currency: Mapping[str, str] = {k.upper(): v.lower() for k, v in settings.currency_affinity.items()}
        self._region: Mapping[str, str] = {k.upper(): v.lower() for k, v in settings.region_affinity.items()}
        if self._default not in self._available:
            raise UnknownProviderException(self._default)

    @property
    def available(self) -> frozenset[str]:
        return self._available

    def select(
        self,
        *,
        currency: str,
        region: Optional[str] = None,
        preferred: Optional[str] = None,
    ) -> str:
        if preferred:
            choice = preferred.lower()
            if choice not in self._available:
                raise UnknownProviderException(preferred)
            return self._log("preference", choice)

        by_currency = self._currency.get(currency.upper())
        if by_currency and by_currency in self._available:
            return self._log("currency", by_currency)

        by_region = self._region.get(region.upper()) if region else None
        if by_region and by_region in self._available:
            return self._log("region", by_region)

        return self._log("default", self._default)

    @staticmethod
    def _log(rule: str, provider: str) -> str:
        logger.debug("provider_selected", rule=rule, provider=provider)
        return provider
