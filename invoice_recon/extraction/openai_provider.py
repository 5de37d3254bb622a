"""OpenAI-based analysis provider for invoice and contract images.

Sends the document image as a vision content part together with a structured
prompt and asks for a single JSON object back.

Includes retry logic with exponential backoff for transient API errors.
"""

import logging
import os
import time
from typing import Any

import openai
from openai import OpenAI
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

# Errors worth another attempt; everything else fails on the first try.
TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIExtractionProvider(ExtractionProvider):
    """Analysis provider backed by an OpenAI vision model.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI analysis provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self.settings.openai_model

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        start = time.perf_counter()
        response_text = self._complete(build_invoice_prompt(contract_terms), image)
        return parse_invoice_response(
            response_text,
            provider=self.provider_name,
            ai_model=self.model_name,
            processing_time_seconds=time.perf_counter() - start,
        )

    def analyze_contract(self, image: DocumentImage) -> ContractAnalysis:
        start = time.perf_counter()
        response_text = self._complete(build_contract_prompt(), image)
        return parse_contract_response(
            response_text,
            provider=self.provider_name,
            ai_model=self.model_name,
            processing_time_seconds=time.perf_counter() - start,
        )

    def _get_client(self) -> OpenAI:
        """Get or create the OpenAI client (lazy initialization).

        Raises:
            ExtractionServiceError: If OPENAI_API_KEY is not set
        """
        api_key = os.getenv("OPENAI_API_KEY")
        if api_key is None:
            raise ExtractionServiceError(
                "OPENAI_API_KEY environment variable not set", self.provider_name
            )
        if self._client is None or self._client.api_key != api_key:
            # Retries are handled below so attempts and backoff stay in one place.
            self._client = OpenAI(
                api_key=api_key,
                timeout=self.settings.extraction_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _complete(self, prompt: str, image: DocumentImage) -> str:
        """Run one analysis round trip with retries for transient errors.

        Args:
            prompt: Analysis prompt
            image: Document image attached to the prompt

        Returns:
            Raw response text

        Raises:
            ExtractionServiceError: After all attempts fail or on non-transient API errors
            ExtractionParseError: If the response carries no content
        """
        client = self._get_client()
        retrying = Retrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.extraction_max_attempts),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            response = retrying(self._create_completion, client, prompt, image)
        except openai.OpenAIError as e:
            raise ExtractionServiceError(
                f"Analysis service call failed: {e}", self.provider_name
            ) from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ExtractionParseError("No content in analysis response", self.provider_name)
        return str(content)

    def _create_completion(self, client: OpenAI, prompt: str, image: DocumentImage) -> Any:
        return client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": image.to_data_url(), "detail": "high"},
                        },
                    ],
                },
            ],
            max_tokens=self.settings.analysis_max_tokens,
            temperature=self.settings.analysis_temperature,
            response_format={"type": "json_object"},
        )
