from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from wrapper_studio.llm import ModelAdapter, estimate_usage
from wrapper_studio.schemas import Conversation, Message, TokenUsage, Wrapper
from wrapper_studio.storage import EntityKind, Storage

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    reply: str
    conversation: Conversation
    usage: TokenUsage
    model: str


def build_transcript(
    wrapper: Wrapper, history: Sequence[Message], user_message: str
) -> List[Message]:
    """Prior turns, a seeded system message for a fresh transcript, then the new user turn."""
    messages = list(history)
    if not messages and wrapper.system_prompt:
        messages.append(Message(role="system", content=wrapper.system_prompt))
    messages.append(Message(role="user", content=user_message))
    return messages


async def load_conversation(
    storage: Storage, wrapper: Wrapper, conversation_id: Optional[int]
) -> Optional[Conversation]:
    """Resolve ``conversation_id`` for this wrapper, or None to start a fresh transcript.

    Unknown ids and ids belonging to another wrapper are not errors.
    """
    if conversation_id is None:
        return None
    record = await storage.get(EntityKind.CONVERSATIONS, conversation_id)
    if record is None or record.get("wrapper_id") != wrapper.id:
        logger.info(
            "Conversation %s not found for wrapper %s, starting a new one",
            conversation_id,
            wrapper.id,
        )
        return None
    return Conversation.model_validate(record)


async def run_chat(
    storage: Storage,
    adapter: ModelAdapter,
    wrapper: Wrapper,
    message: str,
    conversation_id: Optional[int] = None,
) -> ChatResult:
    """Run one turn against the wrapper's model and persist the transcript.

    Nothing is written unless the model call succeeds.
    """
    conversation = await load_conversation(storage, wrapper, conversation_id)
    history = conversation.messages if conversation else []
    transcript = build_transcript(wrapper, history, message)

    reply = await adapter.generate(wrapper, transcript)

    transcript.append(Message(role="assistant", content=reply.text))
    messages = [m.model_dump() for m in transcript]
    record = None
    if conversation is not None:
        record = await storage.update(
            EntityKind.CONVERSATIONS, conversation.id, {"messages": messages}
        )
    if record is None:
        record = await storage.create(
            EntityKind.CONVERSATIONS, {"wrapper_id": wrapper.id, "messages": messages}
        )

    saved = Conversation.model_validate(record)
    logger.info(
        "Chat turn on wrapper %s stored in conversation %s (%d messages)",
        wrapper.id,
        saved.id,
        len(saved.messages),
    )
    return ChatResult(
        reply=reply.text,
        conversation=saved,
        usage=estimate_usage(message, reply.text),
        model=reply.model,
    )


__all__ = ["ChatResult", "build_transcript", "load_conversation", "run_chat"]
