from .base import EmbeddingProvider, EmbeddingResult, ProviderInfo
from .ollama import OllamaEmbeddingProvider
from .simple import SimpleEmbeddingProvider
from .registry import EmbeddingProviderRegistry
