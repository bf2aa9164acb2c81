############################################################
#
# switchyard - Messages API Translation Gateway
#
# __init__.py: Provider/model routing package
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Provider/model routing for switchyard."""

from backend.app.core.routing.capabilities import Capability, advise, required_capabilities
from backend.app.core.routing.resolver import (
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    PROVIDER_DEFAULT_MODELS,
    resolve_provider_model,
)
from backend.app.core.routing.session_state import UNSET, SessionRoutingState

__all__ = [
    "Capability",
    "advise",
    "required_capabilities",
    "DEFAULT_MODEL",
    "DEFAULT_PROVIDER",
    "PROVIDER_DEFAULT_MODELS",
    "resolve_provider_model",
    "UNSET",
    "SessionRoutingState",
]
