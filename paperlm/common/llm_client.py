"""
Provider-agnostic LLM client for paperlm.

Supports Anthropic, OpenAI, and Google Gemini with a shared text-generation
interface. ``agenerate`` runs the blocking SDK call in a worker thread under
a timeout so the retrieval fan-out never stalls on one provider call.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Optional

from .errors import TransientProviderError

logger = logging.getLogger("paperlm.common.llm_client")


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "openai",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        timeout: float = 60.0,
    ) -> None:
        self.provider = (provider or "openai").lower()
        self.model = model
        self.timeout = timeout
        self._client = None

        if self.provider == "auto":
            raise ValueError(
                '"auto" provider must be resolved before creating LLMClient. '
                'Use resolve_llm_provider() from paperlm.common.config.'
            )

        if self.provider == "anthropic":
            if not anthropic_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import anthropic

                self._client = anthropic.Anthropic(api_key=anthropic_api_key)
            except ImportError:
                logger.warning("anthropic package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Anthropic client: %s", e)
            return

        if self.provider == "openai":
            if not openai_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                from openai import OpenAI

                self._client = OpenAI(api_key=openai_api_key)
            except ImportError:
                logger.warning("openai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize OpenAI client: %s", e)
            return

        if self.provider == "google":
            if not google_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import google.generativeai as genai

                genai.configure(api_key=google_api_key)
                self._client = genai
                self._google_models = {}  # keyed by system prompt hash
            except ImportError:
                logger.warning("google-generativeai package not installed")
            except Exception as e:
                logger.warning("Failed to initialize Gemini client: %s", e)
            return

        logger.warning("Unsupported LLM provider: %s", self.provider)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.3,
        timeout: Optional[float] = None,
    ) -> str:
        if not self.is_available:
            raise TransientProviderError("LLM client is not available")
        timeout = timeout if timeout is not None else self.timeout

        if self.provider == "anthropic":
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
                **kwargs,
            )
            return response.content[0].text.strip()

        if self.provider == "openai":
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        if self.provider == "google":
            cache_key = hashlib.md5((system or "").encode()).hexdigest()
            if cache_key not in self._google_models:
                kwargs = {"model_name": self.model}
                if system:
                    kwargs["system_instruction"] = system
                self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
            model = self._google_models[cache_key]
            response = model.generate_content(
                prompt,
                generation_config={"max_output_tokens": max_tokens, "temperature": temperature},
                request_options={"timeout": timeout},
            )
            return response.text.strip()

        raise TransientProviderError(f"Unsupported LLM provider: {self.provider}")

    async def agenerate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.3,
        timeout: Optional[float] = None,
    ) -> str:
        """Async ``generate``. Raises TransientProviderError on failure or timeout."""
        timeout = timeout if timeout is not None else self.timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.generate,
                    prompt,
                    system=system,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except TransientProviderError:
            raise
        except asyncio.TimeoutError as e:
            raise TransientProviderError(f"LLM call timed out after {timeout}s") from e
        except Exception as e:
            raise TransientProviderError(f"LLM call failed: {e}") from e
