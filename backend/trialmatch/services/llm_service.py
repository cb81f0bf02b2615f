import logging
from typing import Any, List, Optional

import httpx
from google import genai
from groq import APIConnectionError, APIStatusError, AsyncGroq

from ..core.config import settings
from ..core.exceptions import AIUnavailable, LLMResponseError, LLMTransportError

logger = logging.getLogger(__name__)


class LLMService:
    """
    Service for interacting with a single LLM provider (Groq or Google Gemini).

    No fallback chain: a failed call surfaces as
    LLMTransportError (connection level, retryable once) or LLMResponseError.
    """

    def __init__(
            self,
            provider: Optional[str] = None,
            api_key: Optional[str] = None,
            model: Optional[str] = None
    ):
        self.provider = (provider or settings.LLM_PROVIDER).lower()
        self.client: Any = None

        if self.provider == "groq":
            api_key = api_key or settings.GROQ_API_KEY
            self.model = model or settings.GROQ_MODEL
            if api_key:
                self.client = AsyncGroq(api_key=api_key)
        elif self.provider == "gemini":
            api_key = api_key or settings.GEMINI_API_KEY
            self.model = model or settings.GEMINI_MODEL
            if api_key:
                self.client = genai.Client(api_key=api_key)
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider!r}")

        if self.client is None:
            logger.info(f"LLM service has no API key for {self.provider}; AI rationales disabled")
        else:
            logger.info(f"LLM service initialized with {self.provider} ({self.model})")

    @property
    def available(self) -> bool:
        return self.client is not None

    def _is_rate_limit_error(self, error: Exception) -> bool:
        """Check if the error is a rate limit error."""
        error_str = str(error).lower()
        return (
            "429" in error_str or
            "rate limit" in error_str or
            "rate_limit" in error_str or
            "quota" in error_str or
            "resource exhausted" in error_str
        )

    async def _try_groq(
            self,
            messages: List[dict],
            temperature: float,
            max_tokens: int
    ) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )
        return response.choices[0].message.content

    async def _try_gemini(
            self,
            messages: List[dict],
            temperature: float,
            max_tokens: int
    ) -> str:
        # Gemini takes a single prompt; fold the system message into it
        prompt_parts = []
        for msg in messages:
            if msg["role"] == "system":
                prompt_parts.append(f"Instructions: {msg['content']}\n\n")
            elif msg["role"] == "user":
                prompt_parts.append(msg["content"])

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents="".join(prompt_parts),
            config={
                "temperature": temperature,
                "max_output_tokens": max_tokens
            }
        )
        return response.text

    async def generate(
            self,
            prompt: str,
            system_prompt: Optional[str] = None,
            temperature: float = 0.7,
            max_tokens: int = 1024
    ) -> str:
        """
        Generate a response from the configured provider.

        Raises:
            LLMTransportError: the provider could not be reached
            LLMResponseError: no client configured, error status, rate limit or empty output
        """
        if self.client is None:
            raise LLMResponseError(
                f"No LLM client available. Please configure the API key for {self.provider}."
            )

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            if self.provider == "groq":
                result = await self._try_groq(messages, temperature, max_tokens)
            else:
                result = await self._try_gemini(messages, temperature, max_tokens)
        except AIUnavailable:
            raise
        except (APIConnectionError, httpx.TransportError, ConnectionError) as e:
            raise LLMTransportError(f"{self.provider} unreachable: {e}") from e
        except APIStatusError as e:
            if self._is_rate_limit_error(e):
                raise LLMResponseError(f"{self.provider} rate limited: {e}") from e
            raise LLMResponseError(f"{self.provider} error status: {e}") from e
        except Exception as e:
            if self._is_rate_limit_error(e):
                raise LLMResponseError(f"{self.provider} rate limited: {e}") from e
            raise LLMResponseError(f"{self.provider} call failed: {e}") from e

        if not result or not result.strip():
            raise LLMResponseError(f"{self.provider} returned an empty response")
        return result

    async def generate_json(
            self,
            prompt: str,
            system_prompt: Optional[str] = None,
            temperature: float = 0.3,
            max_tokens: int = 512
    ) -> str:
        """
        Generate a JSON response from the LLM.
        Uses lower temperature for more deterministic output.
        """
        json_system = (system_prompt or "") + "\n\nRespond ONLY with valid JSON. No explanations or markdown."
        return await self.generate(prompt, json_system, temperature, max_tokens)
