"""Abstract base class for document analysis providers.

Enables switching between the live analysis model and the deterministic
sample provider while keeping one interface for the processing pipeline.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Providers either return a complete, validated structure or raise:
- ExtractionServiceError: transport failure, timeout, rate limit (retryable)
- ExtractionParseError: the model answered with something unusable (not retryable)
"""

from abc import ABC, abstractmethod

from invoice_recon.extraction.schema import (
    ContractAnalysis,
    ContractTermSet,
    DocumentImage,
    InvoiceAnalysis,
)
from invoice_recon.shared.config import Settings


class ExtractionProvider(ABC):
    """Abstract base class for invoice and contract analysis providers.

    Example implementations:
    - OpenAIExtractionProvider: OpenAI vision model (cloud)
    - OllamaExtractionProvider: self-hosted vision model
    - MockExtractionProvider: fixed sample for development and tests
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        """Extract structured invoice data from a document image.

        Args:
            image: Invoice page image
            contract_terms: Governing terms, used to steer extraction toward known items

        Returns:
            InvoiceAnalysis with extracted invoice and metadata

        Raises:
            ExtractionServiceError: Analysis service unreachable or timed out
            ExtractionParseError: Response did not match the declared structure
        """

    @abstractmethod
    def analyze_contract(self, image: DocumentImage) -> ContractAnalysis:
        """Extract vendor details and contract terms from a contract image.

        Args:
            image: Contract page image

        Returns:
            ContractAnalysis with vendor data, term set and confidence

        Raises:
            ExtractionServiceError: Analysis service unreachable or timed out
            ExtractionParseError: Response did not match the declared structure
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier for logging/metrics (e.g., 'openai', 'mock')."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier recorded on reports."""
