from abc import ABC, abstractmethod
from typing import Literal

from ...schemas.legislation import SourceFetchParams, SourceFetchResult


class BaseSourceAdapter(ABC):
    id: str
    name: str
    type: Literal["api", "page_poll"] = "api"
    default_poll_interval_minutes: int = 720

    async def is_available(self) -> bool:
        """False when the adapter cannot run right now (e.g. missing credentials)."""
        return True

    @abstractmethod
    async def fetch(self, params: SourceFetchParams) -> SourceFetchResult:
        ...
