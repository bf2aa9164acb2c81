############################################################
#
# switchyard - Messages API Translation Gateway
#
# messages_api.py: Messages API endpoint
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Messages API endpoint (/v1/messages)."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from backend.app.api.health import REQUEST_COUNT, STREAM_EVENTS
from backend.app.core.canonical_schemas import StreamEventBase
from backend.app.core.errors import GatewayError, InvalidRequestError
from backend.app.logging_config import bind_request_context, get_logger
from backend.app.services.dispatcher import GatewayDispatcher

logger = get_logger(__name__)

router = APIRouter(tags=["messages"])


@router.post("/v1/messages")
async def messages(request: Request):
    """
    Messages API endpoint.

    Clients configure: ANTHROPIC_BASE_URL="http://127.0.0.1:17870"

    The ``model`` field selects the upstream:
    - "openai:gpt-4o", "openrouter/meta-llama/llama-3.1-70b", "gemini:", ...
    - an unprefixed name stays on the last selected provider
    """
    dispatcher: GatewayDispatcher = request.app.state.dispatcher

    # Parse request body
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Invalid JSON body")

    def on_finish(outcome: str) -> None:
        REQUEST_COUNT.labels(provider=provider, outcome=outcome).inc()

    def on_event(event: StreamEventBase) -> None:
        STREAM_EVENTS.labels(provider=provider, type=event.type).inc()

    try:
        relay = await dispatcher.prepare(
            body,
            forward_headers=request.headers,
            on_event=on_event,
            on_finish=on_finish,
        )
    except GatewayError as e:
        REQUEST_COUNT.labels(provider=e.provider or "none", outcome="rejected").inc()
        raise

    provider = relay.provider
    bind_request_context(message_id=relay.message_id)

    if relay.request.stream:
        return StreamingResponse(
            relay.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache, no-transform",
                "Connection": "keep-alive",
            },
        )

    message = await relay.collect()
    return JSONResponse(content=message)
