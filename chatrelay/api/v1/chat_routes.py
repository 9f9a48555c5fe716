import anyio
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from chatrelay.api.v1.chat.checkpointer import SessionFactory
from chatrelay.api.v1.chat.transports.http_transport import HttpClientFactory
from chatrelay.deps import (
    get_db,
    get_http_client_factory,
    get_provider_registry,
    get_session_factory,
)
from chatrelay.provider.registry import ProviderRegistry
from chatrelay.schemas import ChatRequest, ModelInfo, ModelsResponse, RetryRequest
from chatrelay.services.relay_service import ChatRelay, RelayHandle

router = APIRouter(tags=["chat"])

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _streaming_response(handle: RelayHandle) -> StreamingResponse:
    headers = dict(STREAM_HEADERS)
    headers["X-Message-Id"] = handle.message_id
    return StreamingResponse(handle.body, media_type=STREAM_MEDIA_TYPE, headers=headers)


@router.post("/chat")
async def chat_endpoint(
    payload: ChatRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    session_factory: SessionFactory = Depends(get_session_factory),
    http_client_factory: HttpClientFactory = Depends(get_http_client_factory),
) -> StreamingResponse:
    """
    Start a new assistant turn and stream its text back.

    Reasoning is inlined between <think> and </think>. Failures detected
    after this point are only visible on the persisted message.
    """
    relay = ChatRelay(
        db=db,
        registry=registry,
        session_factory=session_factory,
        http_client_factory=http_client_factory,
    )
    # Validation, quota and row inserts use the blocking session.
    prepared = await anyio.to_thread.run_sync(relay.prepare_turn, payload)
    return _streaming_response(relay.start(prepared))


@router.post("/chat/retry")
async def retry_endpoint(
    payload: RetryRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    session_factory: SessionFactory = Depends(get_session_factory),
    http_client_factory: HttpClientFactory = Depends(get_http_client_factory),
) -> StreamingResponse:
    relay = ChatRelay(
        db=db,
        registry=registry,
        session_factory=session_factory,
        http_client_factory=http_client_factory,
    )
    prepared = await anyio.to_thread.run_sync(relay.prepare_retry, payload)
    return _streaming_response(relay.start(prepared))


@router.get("/chat/models", response_model=ModelsResponse)
async def list_models(
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> ModelsResponse:
    return ModelsResponse(
        data=[ModelInfo(**spec.to_public_dict()) for spec in registry.list_models()]
    )
