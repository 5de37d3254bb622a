"""Factory for creating analysis providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

Mock mode is resolved here, once, so the live call path carries no
mock-mode branches.
"""

import logging

from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.mock_provider import MockExtractionProvider
from invoice_recon.extraction.ollama_provider import OllamaExtractionProvider
from invoice_recon.extraction.openai_provider import OpenAIExtractionProvider
from invoice_recon.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of live analysis providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.extraction_provider)
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers.keys())


def create_extraction_provider(settings: Settings) -> ExtractionProvider:
    """Create the analysis provider for the configured mode.

    Args:
        settings: Application settings with extraction_mode and extraction_provider

    Returns:
        MockExtractionProvider in mock mode, otherwise the registered live provider

    Example:
        >>> settings = Settings(extraction_mode="live", extraction_provider="openai")
        >>> provider = create_extraction_provider(settings)
        >>> analysis = provider.analyze_invoice(image)
    """
    if settings.extraction_mode == "mock":
        logger.info("Created extraction provider: mock")
        return MockExtractionProvider(settings)

    provider_name = settings.extraction_provider
    provider = ProviderRegistry.get_provider_class(provider_name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, model server)."
        )

    logger.info(f"Created extraction provider: {provider_name}")
    return provider
