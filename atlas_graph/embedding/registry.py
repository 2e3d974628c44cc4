"""
Embedding provider selection.

The registry owns one instance of each provider and caches the one it
last selected.  It is created by whoever assembles the engine and passed
in explicitly; there is no module-level instance.
"""

import logging
import os
from typing import TYPE_CHECKING, Dict, List, Optional

from ..errors import ProviderUnavailableError
from .base import EmbeddingProvider, EmbeddingResult, ProviderInfo
from .ollama import OllamaEmbeddingProvider
from .simple import SimpleEmbeddingProvider

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "simple"
DEFAULT_NETWORK_PROVIDER = "ollama"
PROVIDER_NAMES = (DEFAULT_NETWORK_PROVIDER, FALLBACK_PROVIDER)


def running_under_tests() -> bool:
    """True while pytest is executing a test."""
    return "PYTEST_CURRENT_TEST" in os.environ


class EmbeddingProviderRegistry:
    """Chooses an embedding provider and generates embeddings through it.

    Selection order is the caller's preferred provider, then the configured
    one, then Ollama, then the deterministic ``simple`` provider, which is
    also used unconditionally when nothing else is available.  In test mode
    without a configured provider, ``simple`` is always used.
    """

    def __init__(self, providers: Optional[Dict[str, EmbeddingProvider]] = None,
                 configured_provider: Optional[str] = None,
                 test_mode: Optional[bool] = None,
                 default_model: Optional[str] = None):
        self._providers: Dict[str, EmbeddingProvider] = dict(providers or {})
        self._providers.setdefault(FALLBACK_PROVIDER, SimpleEmbeddingProvider())
        self.configured_provider = configured_provider or None
        self.default_model = default_model or None
        self.test_mode = running_under_tests() if test_mode is None else test_mode
        self._current: Optional[EmbeddingProvider] = None

    @classmethod
    def from_config(cls, config: "Config") -> "EmbeddingProviderRegistry":
        providers: Dict[str, EmbeddingProvider] = {
            FALLBACK_PROVIDER: SimpleEmbeddingProvider(),
            DEFAULT_NETWORK_PROVIDER: OllamaEmbeddingProvider(
                base_url=config.OLLAMA_URL,
                timeout=config.EMBEDDING_TIMEOUT,
                max_retries=config.EMBEDDING_RETRIES,
                retry_delay=config.EMBEDDING_RETRY_DELAY,
            ),
        }
        test_mode = config.ENV == "test" or running_under_tests()
        return cls(providers, configured_provider=config.EMBEDDING_PROVIDER,
                   test_mode=test_mode, default_model=config.EMBEDDING_MODEL)

    @property
    def current(self) -> Optional[EmbeddingProvider]:
        return self._current

    def provider_names(self) -> List[str]:
        return list(self._providers)

    def get(self, name: str) -> Optional[EmbeddingProvider]:
        return self._providers.get(name)

    def get_provider(self, preferred: Optional[str] = None) -> EmbeddingProvider:
        """Resolve the provider to use, caching the choice."""
        if self._current is not None and (preferred is None or self._current.name == preferred):
            return self._current

        if self.test_mode and not self.configured_provider:
            logger.debug("[EmbeddingRegistry] Test mode: using %s provider", FALLBACK_PROVIDER)
            return self._select(self._fallback())

        candidates = [preferred, self.configured_provider,
                      DEFAULT_NETWORK_PROVIDER, FALLBACK_PROVIDER]
        for name in candidates:
            if not name:
                continue
            provider = self._providers.get(name)
            if provider is None:
                logger.debug("[EmbeddingRegistry] Unknown provider %s skipped", name)
                continue
            try:
                available = provider.is_available()
            except Exception as exc:
                logger.warning("[EmbeddingRegistry] Provider %s failed availability check: %s",
                               name, exc)
                continue
            if available:
                logger.info("[EmbeddingRegistry] Using provider: %s", provider.name)
                return self._select(provider)

        logger.warning("[EmbeddingRegistry] Falling back to %s provider", FALLBACK_PROVIDER)
        return self._select(self._fallback())

    def generate_embedding(self, text: str, provider: Optional[str] = None,
                           model: Optional[str] = None) -> EmbeddingResult:
        """Embed *text*.

        Without an explicit *model*, the configured default model is used when
        the resolved provider is the configured one (or none is configured),
        otherwise the provider's own default.
        """
        chosen = self.get_provider(provider)
        if not model and self.default_model and (
                not self.configured_provider or chosen.name == self.configured_provider):
            model = self.default_model
        model = model or chosen.get_default_model()
        embedding = chosen.generate_embedding(text, model)
        return EmbeddingResult(
            embedding=embedding,
            model=model,
            provider=chosen.name,
            dimensions=len(embedding),
        )

    def provider_info(self) -> List[ProviderInfo]:
        return [provider.info() for provider in self._providers.values()]

    def reset(self) -> None:
        """Forget the cached provider so the next call re-runs selection."""
        self._current = None

    def _select(self, provider: EmbeddingProvider) -> EmbeddingProvider:
        self._current = provider
        return provider

    def _fallback(self) -> EmbeddingProvider:
        provider = self._providers.get(FALLBACK_PROVIDER)
        if provider is None:
            raise ProviderUnavailableError(
                f"No embedding providers available - {FALLBACK_PROVIDER} provider not found")
        return provider
