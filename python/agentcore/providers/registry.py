"""Model-name to provider adapter lookup."""

import logging
from typing import Dict, List, Optional

from agentcore.exceptions import ValidationError
from agentcore.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Selects the adapter serving a model by longest matching prefix."""

    def __init__(self, adapters: Optional[List[ProviderAdapter]] = None) -> None:
        self._adapters: List[ProviderAdapter] = []
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters.append(adapter)
        logger.info("Registered provider %s (%d prefixes)", adapter.provider_name, len(adapter.MODEL_PREFIXES))

    def find(self, model: str) -> Optional[ProviderAdapter]:
        best: Optional[ProviderAdapter] = None
        best_len = 0
        for adapter in self._adapters:
            length = adapter.match_length(model)
            if length > best_len:
                best, best_len = adapter, length
        return best

    def get(self, model: str) -> ProviderAdapter:
        """Return the adapter for *model*.

        Raises:
            ValidationError: no registered adapter supports the model.
        """
        adapter = self.find(model)
        if adapter is None:
            raise ValidationError(f"Unsupported model: {model}", details={"model": model})
        return adapter

    def supported_models(self) -> Dict[str, List[str]]:
        return {a.provider_name: list(a.MODEL_PREFIXES) for a in self._adapters}

    async def aclose(self) -> None:
        for adapter in self._adapters:
            await adapter.aclose()
