from typing import List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from wrapper_studio.config import Settings
from wrapper_studio.llm import ModelAdapter, ModelReply
from wrapper_studio.main import create_app
from wrapper_studio.schemas import Message, Wrapper
from wrapper_studio.storage import MemoryStorage


class ScriptedAdapter(ModelAdapter):
    """Answers from a fixed script and records every transcript it receives."""

    model_names = {"Gemini Pro": "gemini-pro"}

    def __init__(self, replies: Optional[List[str]] = None) -> None:
        super().__init__(default_model="fallback-model", timeout=5)
        self.replies = list(replies or [])
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[Wrapper, List[Message]]] = []

    def to_provider_messages(self, messages: Sequence[Message]):
        return list(messages)

    def chat_model(self, model_id, settings):
        raise AssertionError("scripted adapter never builds a chat model")

    async def generate(self, wrapper: Wrapper, messages: Sequence[Message]) -> ModelReply:
        self.calls.append((wrapper, [m.model_copy() for m in messages]))
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else "ok"
        return ModelReply(text=text, model=self.resolve_model(wrapper.base_model))


@pytest.fixture
def settings() -> Settings:
    return Settings(seed_demo_data=False)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def client(settings, storage, adapter):
    app = create_app(settings=settings, storage=storage, adapter=adapter)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def wrapper() -> Wrapper:
    return Wrapper(
        id=1,
        name="Support",
        base_model="Gemini Pro",
        system_prompt="You are helpful.",
        user_id=1,
    )
