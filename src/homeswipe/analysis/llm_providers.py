"""
Abstracción de proveedores LLM.

Permite switchear fácilmente entre diferentes proveedores (Gemini, Groq)
sin cambiar el código de los analizadores.

Los reintentos no viven acá: los clientes se crean sin reintentos
propios y los errores transitorios (429, 5xx, red) se traducen a
LLMTransientError para que cada analizador decida con tenacity.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import structlog

from homeswipe.config import get_settings
from homeswipe.exceptions import LLMTransientError, LLMUnavailableError

logger = structlog.get_logger()

# Códigos HTTP que justifican reintentar
TRANSIENT_STATUS_CODES = (429, 500, 502, 503, 504)


@dataclass
class LLMResponse:
    """Respuesta normalizada de cualquier LLM."""
    text: str
    model: str
    provider: str
    tokens_used: Optional[int] = None


class BaseLLMProvider(ABC):
    """Clase base para proveedores de LLM."""

    provider_name: str = "base"

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
    ) -> LLMResponse:
        """
        Genera una respuesta del LLM.

        Args:
            system_prompt: Instrucciones del sistema
            user_prompt: Prompt del usuario
            temperature: Temperatura de generación (0.0-1.0)
            max_tokens: Máximo de tokens a generar

        Returns:
            LLMResponse con el texto generado

        Raises:
            LLMTransientError: Rate limit o error transitorio
        """
        pass


class GeminiProvider(BaseLLMProvider):
    """Proveedor de Google Gemini."""

    provider_name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        from google import genai

        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model

        if not self.api_key:
            raise LLMUnavailableError("GEMINI_API_KEY no configurada")

        self.client = genai.Client(api_key=self.api_key)
        logger.info("GeminiProvider inicializado", model=self.model)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
    ) -> LLMResponse:
        from google.genai import errors, types

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[user_prompt],
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=temperature,
                    top_p=0.8,
                    max_output_tokens=max_tokens,
                ),
            )
        except errors.APIError as e:
            if e.code in TRANSIENT_STATUS_CODES:
                raise LLMTransientError(f"Gemini {e.code}: {e.message}") from e
            raise

        return LLMResponse(
            text=(response.text or "").strip(),
            model=self.model,
            provider=self.provider_name,
        )


class GroqProvider(BaseLLMProvider):
    """
    Proveedor de Groq (LPU inference).

    Modelos disponibles:
    - llama-3.1-8b-instant: Rápido y económico
    - llama-3.3-70b-versatile: Más capaz

    Docs: https://console.groq.com/docs/models
    """

    provider_name = "groq"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        from groq import AsyncGroq

        settings = get_settings()
        self.api_key = api_key or settings.groq_api_key
        self.model = model or settings.groq_model

        if not self.api_key:
            raise LLMUnavailableError("GROQ_API_KEY no configurada")

        self.client = AsyncGroq(api_key=self.api_key, max_retries=0)
        logger.info("GroqProvider inicializado", model=self.model)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
    ) -> LLMResponse:
        import groq

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except (groq.RateLimitError, groq.APIConnectionError, groq.InternalServerError) as e:
            # APITimeoutError es subclase de APIConnectionError
            raise LLMTransientError(f"Groq: {e}") from e

        text = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else None

        return LLMResponse(
            text=text.strip(),
            model=self.model,
            provider=self.provider_name,
            tokens_used=tokens,
        )


def get_llm_provider(
    provider: Optional[str] = None,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> BaseLLMProvider:
    """
    Factory para obtener el proveedor de LLM configurado.

    Args:
        provider: 'gemini' o 'groq' (default: settings.llm_provider)
        api_key: API key (default: del settings según provider)
        model: Modelo a usar (default: del settings según provider)

    Returns:
        Instancia del proveedor configurado

    Raises:
        LLMUnavailableError: Si el proveedor no tiene API key
    """
    settings = get_settings()
    provider = provider or settings.llm_provider

    if provider.lower() == "groq":
        return GroqProvider(api_key=api_key, model=model)
    elif provider.lower() == "gemini":
        return GeminiProvider(api_key=api_key, model=model)
    else:
        raise ValueError(f"Proveedor LLM no soportado: {provider}. Usar 'gemini' o 'groq'")


def try_get_llm_provider(**kwargs) -> Optional[BaseLLMProvider]:
    """Como get_llm_provider, pero devuelve None si falta la API key."""
    try:
        return get_llm_provider(**kwargs)
    except LLMUnavailableError as e:
        logger.warning("LLM no disponible, usando fallback sin IA", reason=str(e))
        return None
