from __future__ import annotations

from typing import Dict, Iterable, List
import logging

from .base import BaseSourceAdapter
from .federal_register import FederalRegisterAdapter
from .legiscan import LegiScanAdapter
from ...core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """
    Explicit registry of source adapters, keyed by adapter id.

    - Built once at process start (see ``build_default_registry``) and handed
      to the engines; there is no module-level registry to mutate.
    - Adapter ids double as ``legislation_sources.id``.
    """

    def __init__(self, adapters: Iterable[BaseSourceAdapter] = ()) -> None:
        self._adapters: Dict[str, BaseSourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: BaseSourceAdapter) -> None:
        if adapter.id in self._adapters:
            logger.warning(
                "Adapter '%s' already registered; replacing",
                adapter.id,
                extra={"source": adapter.id},
            )
        self._adapters[adapter.id] = adapter

    def get(self, source_id: str) -> BaseSourceAdapter | None:
        return self._adapters.get(source_id)

    def all(self) -> List[BaseSourceAdapter]:
        return list(self._adapters.values())

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(settings: Settings | None = None) -> AdapterRegistry:
    settings = settings or get_settings()
    return AdapterRegistry(
        [
            FederalRegisterAdapter(settings),
            LegiScanAdapter(settings),
        ]
    )


__all__ = [
    "AdapterRegistry",
    "BaseSourceAdapter",
    "FederalRegisterAdapter",
    "LegiScanAdapter",
    "build_default_registry",
]
