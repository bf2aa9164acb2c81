############################################################
#
# switchyard - Messages API Translation Gateway
#
# session_state.py: Sticky provider/model selection
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Sticky provider/model selection shared by all in-flight requests."""

import asyncio
from typing import Optional

from backend.app.core.canonical_schemas import ProviderModel


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


class SessionRoutingState:
    """Single cell holding the last successfully routed ProviderModel.

    Created unset at application startup and owned by the app lifespan.
    Last writer wins; readers never observe a partially written value.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._value = UNSET

    async def get(self) -> Optional[ProviderModel]:
        """Current selection, or None while unset."""
        async with self._lock:
            return None if self._value is UNSET else self._value

    async def set(self, selection: ProviderModel) -> None:
        async with self._lock:
            self._value = selection

    async def reset(self) -> None:
        async with self._lock:
            self._value = UNSET

    def peek(self) -> Optional[ProviderModel]:
        """Lock-free read for status endpoints (assignment is atomic)."""
        return None if self._value is UNSET else self._value

    @property
    def is_set(self) -> bool:
        return self._value is not UNSET
