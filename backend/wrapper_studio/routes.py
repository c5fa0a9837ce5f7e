from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from wrapper_studio.conversation import run_chat
from wrapper_studio.llm import ModelAdapter, ModelInvocationError
from wrapper_studio.schemas import (
    ChatRequest,
    ChatResponse,
    Conversation,
    ConversationCreate,
    Integration,
    IntegrationCreate,
    IntegrationUpdate,
    Prompt,
    PromptCreate,
    PromptUpdate,
    Wrapper,
    WrapperCreate,
    WrapperUpdate,
)
from wrapper_studio.storage import EntityKind, Storage

logger = logging.getLogger("wrapper-studio")

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_adapter(request: Request) -> ModelAdapter:
    return request.app.state.adapter


def get_user_id(request: Request) -> int:
    # No authentication: every request acts as the bootstrap demo user.
    return request.app.state.demo_user_id


async def _require_wrapper(storage: Storage, wrapper_id: int) -> Wrapper:
    record = await storage.get(EntityKind.WRAPPERS, wrapper_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Wrapper not found")
    return Wrapper.model_validate(record)


async def _require(storage: Storage, kind: EntityKind, record_id: int, label: str) -> Dict[str, Any]:
    record = await storage.get(kind, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


async def _update(
    storage: Storage, kind: EntityKind, record_id: int, fields: Dict[str, Any], label: str
) -> Dict[str, Any]:
    record = await storage.update(kind, record_id, fields)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return record


async def _delete(storage: Storage, kind: EntityKind, record_id: int, label: str) -> Response:
    if not await storage.delete(kind, record_id):
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@router.get("/health", tags=["health"])
async def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Wrappers
# ---------------------------------------------------------------------------
@router.get("/wrappers", response_model=List[Wrapper])
async def list_wrappers(
    storage: Storage = Depends(get_storage), user_id: int = Depends(get_user_id)
) -> List[Wrapper]:
    records = await storage.list_by_parent(EntityKind.WRAPPERS, user_id)
    return [Wrapper.model_validate(r) for r in records]


@router.get("/wrappers/{wrapper_id}", response_model=Wrapper)
async def get_wrapper(wrapper_id: int, storage: Storage = Depends(get_storage)) -> Wrapper:
    return await _require_wrapper(storage, wrapper_id)


@router.post("/wrappers", response_model=Wrapper, status_code=status.HTTP_201_CREATED)
async def create_wrapper(
    payload: WrapperCreate,
    storage: Storage = Depends(get_storage),
    user_id: int = Depends(get_user_id),
) -> Wrapper:
    await _require(storage, EntityKind.USERS, user_id, "User")
    record = await storage.create(EntityKind.WRAPPERS, {**payload.to_record(), "user_id": user_id})
    logger.info("Created wrapper %s (%s)", record["id"], payload.name)
    return Wrapper.model_validate(record)


@router.put("/wrappers/{wrapper_id}", response_model=Wrapper)
async def update_wrapper(
    wrapper_id: int, payload: WrapperUpdate, storage: Storage = Depends(get_storage)
) -> Wrapper:
    record = await _update(storage, EntityKind.WRAPPERS, wrapper_id, payload.to_record(), "Wrapper")
    return Wrapper.model_validate(record)


@router.delete(
    "/wrappers/{wrapper_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response
)
async def delete_wrapper(wrapper_id: int, storage: Storage = Depends(get_storage)) -> Response:
    return await _delete(storage, EntityKind.WRAPPERS, wrapper_id, "Wrapper")


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
@router.get("/wrappers/{wrapper_id}/prompts", response_model=List[Prompt])
async def list_prompts(wrapper_id: int, storage: Storage = Depends(get_storage)) -> List[Prompt]:
    records = await storage.list_by_parent(EntityKind.PROMPTS, wrapper_id)
    return [Prompt.model_validate(r) for r in records]


@router.post(
    "/wrappers/{wrapper_id}/prompts", response_model=Prompt, status_code=status.HTTP_201_CREATED
)
async def create_prompt(
    wrapper_id: int, payload: PromptCreate, storage: Storage = Depends(get_storage)
) -> Prompt:
    await _require_wrapper(storage, wrapper_id)
    record = await storage.create(
        EntityKind.PROMPTS, {**payload.to_record(), "wrapper_id": wrapper_id}
    )
    return Prompt.model_validate(record)


@router.get("/prompts/{prompt_id}", response_model=Prompt)
async def get_prompt(prompt_id: int, storage: Storage = Depends(get_storage)) -> Prompt:
    return Prompt.model_validate(await _require(storage, EntityKind.PROMPTS, prompt_id, "Prompt"))


@router.put("/prompts/{prompt_id}", response_model=Prompt)
async def update_prompt(
    prompt_id: int, payload: PromptUpdate, storage: Storage = Depends(get_storage)
) -> Prompt:
    record = await _update(storage, EntityKind.PROMPTS, prompt_id, payload.to_record(), "Prompt")
    return Prompt.model_validate(record)


@router.delete("/prompts/{prompt_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_prompt(prompt_id: int, storage: Storage = Depends(get_storage)) -> Response:
    return await _delete(storage, EntityKind.PROMPTS, prompt_id, "Prompt")


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------
@router.get("/wrappers/{wrapper_id}/integrations", response_model=List[Integration])
async def list_integrations(
    wrapper_id: int, storage: Storage = Depends(get_storage)
) -> List[Integration]:
    records = await storage.list_by_parent(EntityKind.INTEGRATIONS, wrapper_id)
    return [Integration.model_validate(r) for r in records]


@router.post(
    "/wrappers/{wrapper_id}/integrations",
    response_model=Integration,
    status_code=status.HTTP_201_CREATED,
)
async def create_integration(
    wrapper_id: int, payload: IntegrationCreate, storage: Storage = Depends(get_storage)
) -> Integration:
    await _require_wrapper(storage, wrapper_id)
    record = await storage.create(
        EntityKind.INTEGRATIONS, {**payload.to_record(), "wrapper_id": wrapper_id}
    )
    return Integration.model_validate(record)


@router.get("/integrations/{integration_id}", response_model=Integration)
async def get_integration(
    integration_id: int, storage: Storage = Depends(get_storage)
) -> Integration:
    record = await _require(storage, EntityKind.INTEGRATIONS, integration_id, "Integration")
    return Integration.model_validate(record)


@router.put("/integrations/{integration_id}", response_model=Integration)
async def update_integration(
    integration_id: int, payload: IntegrationUpdate, storage: Storage = Depends(get_storage)
) -> Integration:
    record = await _update(
        storage, EntityKind.INTEGRATIONS, integration_id, payload.to_record(), "Integration"
    )
    return Integration.model_validate(record)


@router.delete(
    "/integrations/{integration_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def delete_integration(
    integration_id: int, storage: Storage = Depends(get_storage)
) -> Response:
    return await _delete(storage, EntityKind.INTEGRATIONS, integration_id, "Integration")


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------
@router.get("/wrappers/{wrapper_id}/conversations", response_model=List[Conversation])
async def list_conversations(
    wrapper_id: int, storage: Storage = Depends(get_storage)
) -> List[Conversation]:
    records = await storage.list_by_parent(EntityKind.CONVERSATIONS, wrapper_id)
    return [Conversation.model_validate(r) for r in records]


@router.post(
    "/wrappers/{wrapper_id}/conversations",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(
    wrapper_id: int, payload: ConversationCreate, storage: Storage = Depends(get_storage)
) -> Conversation:
    await _require_wrapper(storage, wrapper_id)
    record = await storage.create(
        EntityKind.CONVERSATIONS, {**payload.to_record(), "wrapper_id": wrapper_id}
    )
    return Conversation.model_validate(record)


@router.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: int, storage: Storage = Depends(get_storage)
) -> Conversation:
    record = await _require(storage, EntityKind.CONVERSATIONS, conversation_id, "Conversation")
    return Conversation.model_validate(record)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
@router.post("/chat", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    storage: Storage = Depends(get_storage),
    adapter: ModelAdapter = Depends(get_adapter),
) -> ChatResponse:
    """Run one turn through a wrapper's model and store the updated transcript."""
    if not payload.wrapper_id or not payload.message:
        raise HTTPException(status_code=400, detail="Wrapper ID and message are required")

    wrapper = await _require_wrapper(storage, payload.wrapper_id)

    try:
        result = await run_chat(
            storage, adapter, wrapper, payload.message, payload.conversation_id
        )
    except ModelInvocationError as e:
        # Upstream detail is logged by the adapter; the caller gets a generic message.
        logger.error("Chat on wrapper %s failed: %s", wrapper.id, e)
        raise HTTPException(status_code=500, detail="Error communicating with AI model")

    return ChatResponse(
        message=result.reply,
        conversation_id=result.conversation.id,
        usage=result.usage,
        model=result.model,
    )


__all__ = ["router", "get_adapter", "get_storage", "get_user_id"]
