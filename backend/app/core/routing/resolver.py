############################################################
#
# switchyard - Messages API Translation Gateway
#
# resolver.py: Model string to provider/model resolution
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Model string to provider/model resolution.

Model strings may carry a provider prefix separated by ``:`` or ``/``::

    openai:gpt-4o              -> (openai, gpt-4o)
    openrouter/meta-llama/x    -> (openrouter, meta-llama/x)
    gemini:                    -> (gemini, <gemini default>)
    gpt-4o                     -> sticky provider, or the global default

A recognized prefix always wins over the sticky selection.
"""

from typing import Dict, Optional

from backend.app.core.canonical_schemas import Provider, ProviderModel
from backend.app.core.errors import UnknownProviderError

DEFAULT_PROVIDER = Provider.GLM
DEFAULT_MODEL = "glm-4.7"

# Used when a prefix is given with nothing after it ("gemini:")
PROVIDER_DEFAULT_MODELS: Dict[Provider, str] = {
    Provider.ANTHROPIC: "claude-sonnet-4-5",
    Provider.GLM: DEFAULT_MODEL,
    Provider.OPENAI: "gpt-4o",
    Provider.OPENROUTER: "openrouter/auto",
    Provider.GEMINI: "gemini-2.5-pro",
    Provider.OLLAMA: "llama3.2",
}

_PROVIDERS_BY_PREFIX = {p.value: p for p in Provider}


def resolve_provider_model(
    model: Optional[str],
    sticky: Optional[ProviderModel] = None,
) -> ProviderModel:
    """Resolve a request's model string to a provider and native model name.

    Args:
        model: Raw ``model`` field from the request (may be empty)
        sticky: Last successfully routed selection, or None when unset

    Returns:
        ProviderModel for the request

    Raises:
        UnknownProviderError: The string has a delimiter but the text before
            it is not a known provider
    """
    model = model or ""

    split_at = _first_delimiter(model)
    if split_at is not None:
        hint = model[:split_at]
        remainder = model[split_at + 1:]
        provider = _PROVIDERS_BY_PREFIX.get(hint)
        if provider is None:
            raise UnknownProviderError(hint)
        return ProviderModel(
            provider=provider,
            model=remainder or PROVIDER_DEFAULT_MODELS[provider],
        )

    if sticky is not None:
        if not model:
            return sticky
        return ProviderModel(provider=sticky.provider, model=model)

    return ProviderModel(provider=DEFAULT_PROVIDER, model=DEFAULT_MODEL)


def _first_delimiter(model: str) -> Optional[int]:
    positions = [i for i in (model.find(":"), model.find("/")) if i >= 0]
    return min(positions) if positions else None
