from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List


@dataclass
class EmbeddingResult:
    """An embedding together with the model and provider that produced it."""
    embedding: List[float]
    model: str
    provider: str
    dimensions: int


@dataclass
class ProviderInfo:
    name: str
    available: bool
    default_model: str
    supported_models: List[str] = field(default_factory=list)


class EmbeddingProvider(ABC):
    """Common interface of every embedding backend."""

    name: str = ""

    @abstractmethod
    def generate_embedding(self, text: str, model: str) -> List[float]:
        """Return the embedding vector of *text* computed with *model*."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can serve requests right now."""

    @abstractmethod
    def get_default_model(self) -> str:
        """Model used when the caller does not name one."""

    @abstractmethod
    def get_supported_models(self) -> List[str]:
        """Models this backend is known to handle."""

    def info(self) -> ProviderInfo:
        """Describe the provider; an availability check that raises counts as unavailable."""
        try:
            available = bool(self.is_available())
        except Exception:
            available = False
        return ProviderInfo(
            name=self.name,
            available=available,
            default_model=self.get_default_model(),
            supported_models=list(self.get_supported_models()),
        )
