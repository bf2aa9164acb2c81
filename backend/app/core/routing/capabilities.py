############################################################
#
# switchyard - Messages API Translation Gateway
#
# capabilities.py: Advisory provider capability check
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Advisory capability check.

Requests are never rejected or altered here; a mismatch only produces a
warning so the operator can see why a backend misbehaves.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from backend.app.core.canonical_schemas import CanonicalRequest, Provider
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


class Capability(str, Enum):
    TOOLS = "tools"
    VISION = "vision"
    THINKING = "thinking"


_ALL = frozenset(Capability)

PROVIDER_CAPABILITIES: Dict[Provider, FrozenSet[Capability]] = {
    Provider.ANTHROPIC: _ALL,
    Provider.GLM: _ALL,
    Provider.OPENAI: frozenset({Capability.TOOLS, Capability.VISION}),
    Provider.OLLAMA: frozenset({Capability.TOOLS, Capability.VISION}),
    # Tool support varies per routed model
    Provider.OPENROUTER: frozenset({Capability.VISION}),
    Provider.GEMINI: frozenset({Capability.VISION}),
}


def required_capabilities(request: CanonicalRequest) -> FrozenSet[Capability]:
    """Capabilities the request actually uses."""
    required = set()
    if request.requires_tools():
        required.add(Capability.TOOLS)
    if request.requires_vision():
        required.add(Capability.VISION)
    if request.requires_thinking():
        required.add(Capability.THINKING)
    return frozenset(required)


def advise(request: CanonicalRequest, provider: Provider) -> Optional[str]:
    """Warn when the request uses capabilities the provider lacks.

    Returns:
        The advisory text, or None when everything is supported
    """
    missing = required_capabilities(request) - PROVIDER_CAPABILITIES.get(provider, _ALL)
    if not missing:
        return None

    names = sorted(c.value for c in missing)
    advisory = f"{provider.value} may not support: {', '.join(names)}"
    logger.warning("capability_advisory", provider=provider.value, missing=names)
    return advisory
