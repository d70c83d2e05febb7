"""
Módulo de análisis con IA.

Extracción de tags de listings y explicación del match usando LLM
(Gemini/Groq), con fallbacks sin IA.
"""

from homeswipe.analysis.explainer import MatchExplainer, tag_based_explanation
from homeswipe.analysis.keyword_tags import KeywordTagDetector
from homeswipe.analysis.llm_providers import (
    BaseLLMProvider,
    GeminiProvider,
    GroqProvider,
    LLMResponse,
    get_llm_provider,
    try_get_llm_provider,
)
from homeswipe.analysis.tag_extractor import TagExtractor

__all__ = [
    # Analizadores
    "TagExtractor",
    "MatchExplainer",
    "KeywordTagDetector",
    "tag_based_explanation",
    # Proveedores LLM
    "get_llm_provider",
    "try_get_llm_provider",
    "BaseLLMProvider",
    "GeminiProvider",
    "GroqProvider",
    "LLMResponse",
]
