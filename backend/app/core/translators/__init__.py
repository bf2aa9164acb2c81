############################################################
#
# switchyard - Messages API Translation Gateway
#
# __init__.py: API translation layer package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API translation layer for switchyard.

Provides translation between the canonical Messages API format and:
- Anthropic / GLM native Messages API (passthrough)
- OpenAI Chat Completions (OpenAI, OpenRouter)
- Gemini streamGenerateContent
- Ollama /api/chat
"""

from backend.app.core.translators.base import (
    DecodeContext,
    Translator,
    UpstreamRequest,
    UpstreamTarget,
)
from backend.app.core.translators.gemini_out import GeminiTranslator
from backend.app.core.translators.ollama_out import OllamaTranslator
from backend.app.core.translators.openai_out import OpenAITranslator, OpenRouterTranslator
from backend.app.core.translators.passthrough import PassthroughTranslator

__all__ = [
    "DecodeContext",
    "Translator",
    "UpstreamRequest",
    "UpstreamTarget",
    "GeminiTranslator",
    "OllamaTranslator",
    "OpenAITranslator",
    "OpenRouterTranslator",
    "PassthroughTranslator",
]
