"""Ollama-based analysis provider for self-hosted vision models.

Uses a local Ollama server for invoice and contract analysis so documents
never leave the premises. Requires a vision-capable model
(llama3.2-vision, qwen2.5vl, llava).

See: https://ollama.ai/
"""

import logging
import time

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.parsing import parse_contract_response, parse_invoice_response
from invoice_recon.extraction.prompts import (
    SYSTEM_PROMPT,
    build_contract_prompt,
    build_invoice_prompt,
)
from invoice_recon.extraction.schema import (
    ContractAnalysis,
    ContractTermSet,
    DocumentImage,
    InvoiceAnalysis,
)
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import ExtractionParseError, ExtractionServiceError

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Analysis provider backed by a self-hosted Ollama vision model."""

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama analysis provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=settings.extraction_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def model_name(self) -> str:
        return self._model

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is pulled
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        start = time.perf_counter()
        response_text = self._generate(build_invoice_prompt(contract_terms), image)
        return parse_invoice_response(
            response_text,
            provider=self.provider_name,
            ai_model=self.model_name,
            processing_time_seconds=time.perf_counter() - start,
        )

    def analyze_contract(self, image: DocumentImage) -> ContractAnalysis:
        start = time.perf_counter()
        response_text = self._generate(build_contract_prompt(), image)
        return parse_contract_response(
            response_text,
            provider=self.provider_name,
            ai_model=self.model_name,
            processing_time_seconds=time.perf_counter() - start,
        )

    def _generate(self, prompt: str, image: DocumentImage) -> str:
        """Call Ollama with retry logic for transient errors.

        Raises:
            ExtractionServiceError: After all retry attempts are exhausted
        """
        retrying = Retrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._post_generate, prompt, image)
        except httpx.HTTPError as e:
            raise ExtractionServiceError(
                f"Ollama request failed: {e}", self.provider_name
            ) from e

    def _post_generate(self, prompt: str, image: DocumentImage) -> str:
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "system": SYSTEM_PROMPT,
                "prompt": prompt,
                "images": [image.to_base64()],
                "format": "json",
                "stream": False,
                "options": {
                    "temperature": self.settings.analysis_temperature,
                    "num_predict": self.settings.analysis_max_tokens,
                },
            },
        )
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise ExtractionParseError(
                f"Ollama returned a body that is not JSON: {e}", self.provider_name
            ) from e
        if not isinstance(body, dict) or not isinstance(body.get("response", ""), str):
            raise ExtractionParseError(
                "Ollama response has no text 'response' field", self.provider_name
            )
        result: str = body.get("response", "")
        return result
