############################################################
#
# switchyard - Messages API Translation Gateway
#
# dispatcher.py: Request validation, routing and relay construction
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Gateway dispatcher - turns an inbound body into a ready-to-run relay.

Everything that can fail before the downstream response is committed happens
here: body validation, provider resolution and credential lookup. Once
``prepare`` returns, the only failures left are upstream ones, which the
relay reports in-stream.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
from pydantic import ValidationError

from backend.app.core.canonical_schemas import (
    CanonicalRequest,
    Provider,
    ProviderModel,
    StreamEventBase,
    UpstreamCredential,
)
from backend.app.core.errors import InvalidRequestError, MissingCredentialError
from backend.app.core.routing import (
    SessionRoutingState,
    advise,
    resolve_provider_model,
)
from backend.app.core.translators import (
    GeminiTranslator,
    OllamaTranslator,
    OpenAITranslator,
    OpenRouterTranslator,
    PassthroughTranslator,
    Translator,
    UpstreamTarget,
)
from backend.app.logging_config import bind_request_context, get_logger
from backend.app.services.relay import StreamingRelay
from backend.app.settings import Settings

logger = get_logger(__name__)

ENV_FILE_HINT = "~/.claude-proxy/.env"


def build_translators(settings: Settings) -> Dict[Provider, Translator]:
    """Fixed provider -> translator table."""
    return {
        Provider.ANTHROPIC: PassthroughTranslator(Provider.ANTHROPIC, auth_scheme="x-api-key"),
        Provider.GLM: PassthroughTranslator(Provider.GLM, auth_scheme="bearer"),
        Provider.OPENAI: OpenAITranslator(),
        Provider.OPENROUTER: OpenRouterTranslator(
            referer=settings.openrouter_referer,
            title=settings.openrouter_title,
        ),
        Provider.GEMINI: GeminiTranslator(),
        Provider.OLLAMA: OllamaTranslator(),
    }


def build_credentials(settings: Settings) -> Dict[Provider, Any]:
    """Credential table built once at startup.

    Values are either an UpstreamCredential or the MissingCredentialError to
    raise when the provider is selected.
    """
    def keyed(env_name: str, key: Optional[str], base_url: Optional[str]):
        if not key:
            return MissingCredentialError(f"{env_name} not set in {ENV_FILE_HINT}")
        return UpstreamCredential(base_url=base_url or "", secret=key)

    def passthrough(url_env: str, key_env: str, base_url: Optional[str], key: Optional[str], hint: str = ""):
        if not base_url or not key:
            return MissingCredentialError(
                f"{url_env} and {key_env} not set in {ENV_FILE_HINT}{hint}",
                status_code=500,
                error_type="api_error",
            )
        return UpstreamCredential(base_url=base_url, secret=key)

    ollama: Any
    if settings.ollama_base_url:
        ollama = UpstreamCredential(base_url=settings.ollama_base_url, secret=settings.ollama_api_key)
    else:
        ollama = MissingCredentialError(
            f"OLLAMA_BASE_URL not set in {ENV_FILE_HINT}",
            status_code=500,
            error_type="api_error",
        )

    return {
        Provider.OPENAI: keyed("OPENAI_API_KEY", settings.openai_api_key, settings.openai_base_url),
        Provider.OPENROUTER: keyed(
            "OPENROUTER_API_KEY", settings.openrouter_api_key, settings.openrouter_base_url
        ),
        Provider.GEMINI: keyed("GEMINI_API_KEY", settings.gemini_api_key, settings.gemini_base_url),
        Provider.ANTHROPIC: passthrough(
            "ANTHROPIC_UPSTREAM_URL",
            "ANTHROPIC_API_KEY",
            settings.anthropic_upstream_url,
            settings.anthropic_api_key,
        ),
        Provider.GLM: passthrough(
            "GLM_UPSTREAM_URL",
            "ZAI_API_KEY",
            settings.glm_upstream_url,
            settings.glm_api_key,
            hint=". Run: ccx --setup",
        ),
        Provider.OLLAMA: ollama,
    }


class GatewayDispatcher:
    """Validate, route and wire one request to its upstream."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        session_state: SessionRoutingState,
    ):
        self.settings = settings
        self.client = client
        self.session_state = session_state
        self.translators = build_translators(settings)
        self.credentials = build_credentials(settings)

        configured = [p.value for p, c in self.credentials.items() if isinstance(c, UpstreamCredential)]
        logger.info("dispatcher_ready", configured_providers=configured)

    def credential_for(self, provider: Provider) -> UpstreamCredential:
        """Credential for ``provider``.

        Raises:
            MissingCredentialError: Provider is not configured
        """
        credential = self.credentials.get(provider)
        if isinstance(credential, UpstreamCredential):
            return credential
        if isinstance(credential, MissingCredentialError):
            raise MissingCredentialError(
                credential.message,
                status_code=credential.status_code,
                error_type=credential.error_type,
                provider=provider.value,
            )
        raise MissingCredentialError(f"No credential configured for {provider.value}")

    async def prepare(
        self,
        body: Any,
        forward_headers: Optional[Mapping[str, str]] = None,
        disconnect_check: Optional[Callable[[], Awaitable[bool]]] = None,
        on_event: Optional[Callable[[StreamEventBase], None]] = None,
        on_finish: Optional[Callable[[str], None]] = None,
    ) -> StreamingRelay:
        """Turn an inbound body into a relay ready to stream.

        Args:
            body: Decoded JSON body of the inbound request
            forward_headers: Inbound headers; passthrough upstreams receive
                the ones they understand
            disconnect_check: Returns True once the caller has gone away

        Returns:
            StreamingRelay in IDLE state

        Raises:
            InvalidRequestError: Body is not a valid Messages request
            UnknownProviderError: Model string names an unknown provider
            MissingCredentialError: Resolved provider is not configured
        """
        request = parse_request(body)

        sticky = await self.session_state.get()
        selection = resolve_provider_model(request.model, sticky)
        # The session follows the selection even if the credential check below fails
        await self.session_state.set(selection)
        bind_request_context(provider=selection.provider.value, model=selection.model)
        logger.info(
            "route_resolved",
            requested=request.model,
            provider=selection.provider.value,
            model=selection.model,
            sticky=sticky.as_status() if sticky else None,
        )

        advise(request, selection.provider)

        credential = self.credential_for(selection.provider)

        target = UpstreamTarget(
            provider=selection.provider,
            model=selection.model,
            credential=credential,
            anthropic_version=self.settings.anthropic_version,
            forward_headers=dict(forward_headers or {}),
        )
        return StreamingRelay(
            translator=self.translators[selection.provider],
            request=request,
            target=target,
            client=self.client,
            settings=self.settings,
            disconnect_check=disconnect_check,
            on_event=on_event,
            on_finish=on_finish,
        )

    def active(self) -> Optional[ProviderModel]:
        """Current sticky selection, or None before the first routed request."""
        return self.session_state.peek()


def parse_request(body: Any) -> CanonicalRequest:
    """Validate a decoded JSON body as a Messages request.

    Raises:
        InvalidRequestError: Body is not an object or fails validation
    """
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return CanonicalRequest.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidRequestError(f"{location}: {first.get('msg', 'invalid value')}")
