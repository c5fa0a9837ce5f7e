import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from wrapper_studio.config import Settings
from wrapper_studio.llm import (
    GeminiAdapter,
    GenerationSettings,
    ModelInvocationError,
    OpenAIAdapter,
    build_adapter,
    estimate_usage,
    gemini_safety_settings,
)
from wrapper_studio.schemas import Message


def _fake_chat_class(created, reply="model says hi", delay=0.0, error=None):
    class FakeChatModel:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.received = None
            created.append(self)

        async def ainvoke(self, messages):
            self.received = messages
            if delay:
                await asyncio.sleep(delay)
            if error is not None:
                raise error
            return AIMessage(content=reply)

    return FakeChatModel


def _gemini(timeout=5.0, api_key="test-key"):
    return GeminiAdapter(api_key=api_key, default_model="gemini-default", timeout=timeout)


TRANSCRIPT = [
    Message(role="system", content="Be brief."),
    Message(role="user", content="Hi"),
    Message(role="assistant", content="Hello!"),
    Message(role="user", content="What time is it?"),
]


def test_generation_settings_scale_stored_integers(wrapper):
    settings = GenerationSettings.from_wrapper(wrapper)
    assert settings.temperature == pytest.approx(0.7)
    assert settings.top_p == pytest.approx(0.9)
    assert settings.max_output_tokens == 2048


def test_gemini_model_table_and_fallback():
    adapter = _gemini()
    assert adapter.resolve_model("Gemini Pro") == "gemini-pro"
    assert adapter.resolve_model("Gemini Pro Vision") == "gemini-pro-vision"
    assert adapter.resolve_model("Totally Unknown") == "gemini-default"


def test_gemini_translation_has_no_system_role():
    translated = _gemini().to_provider_messages(TRANSCRIPT)
    assert [type(m) for m in translated] == [HumanMessage, HumanMessage, AIMessage, HumanMessage]
    assert translated[0].content == "(System instruction: Be brief.)"
    assert translated[1].content == "Hi"
    assert translated[2].content == "Hello!"


def test_openai_translation_keeps_system_role():
    adapter = OpenAIAdapter(api_key="k", default_model="gpt-4o-mini", timeout=5)
    translated = adapter.to_provider_messages(TRANSCRIPT)
    assert [type(m) for m in translated] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert translated[0].content == "Be brief."


def test_gemini_generate_builds_request(monkeypatch, wrapper):
    created = []
    monkeypatch.setattr("langchain_google_genai.ChatGoogleGenerativeAI", _fake_chat_class(created))

    reply = asyncio.run(_gemini().generate(wrapper, TRANSCRIPT))

    assert reply.text == "model says hi"
    assert reply.model == "gemini-pro"
    (chat,) = created
    assert chat.kwargs["model"] == "gemini-pro"
    assert chat.kwargs["google_api_key"] == "test-key"
    assert chat.kwargs["temperature"] == pytest.approx(0.7)
    assert chat.kwargs["top_p"] == pytest.approx(0.9)
    assert chat.kwargs["max_output_tokens"] == 2048
    assert chat.kwargs["safety_settings"] == gemini_safety_settings()
    # History first, the new user turn last
    assert len(chat.received) == 4
    assert isinstance(chat.received[-1], HumanMessage)
    assert chat.received[-1].content == "What time is it?"


def test_safety_settings_block_medium_and_above():
    from langchain_google_genai import HarmBlockThreshold, HarmCategory

    settings = gemini_safety_settings()
    assert set(settings) == {
        HarmCategory.HARM_CATEGORY_HARASSMENT,
        HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    }
    assert set(settings.values()) == {HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE}


def test_openai_generate_builds_request(monkeypatch, wrapper):
    created = []
    monkeypatch.setattr("langchain_openai.ChatOpenAI", _fake_chat_class(created, reply="sure"))
    adapter = OpenAIAdapter(api_key="sk-test", default_model="gpt-4o-mini", timeout=5)

    reply = asyncio.run(adapter.generate(wrapper, TRANSCRIPT))

    assert reply.text == "sure"
    assert reply.model == "gpt-4o-mini"
    (chat,) = created
    assert chat.kwargs["temperature"] == pytest.approx(0.7)
    assert chat.kwargs["top_p"] == pytest.approx(0.9)
    assert chat.kwargs["max_tokens"] == 2048
    assert isinstance(chat.received[0], SystemMessage)


def test_provider_error_is_opaque(monkeypatch, wrapper):
    created = []
    monkeypatch.setattr(
        "langchain_google_genai.ChatGoogleGenerativeAI",
        _fake_chat_class(created, error=ValueError("quota exceeded for key abc")),
    )
    with pytest.raises(ModelInvocationError) as excinfo:
        asyncio.run(_gemini().generate(wrapper, TRANSCRIPT))
    assert "abc" not in str(excinfo.value)
    assert len(created) == 1


def test_missing_api_key_is_invocation_error(wrapper):
    with pytest.raises(ModelInvocationError):
        asyncio.run(_gemini(api_key=None).generate(wrapper, TRANSCRIPT))


def test_slow_provider_times_out(monkeypatch, wrapper):
    created = []
    monkeypatch.setattr(
        "langchain_google_genai.ChatGoogleGenerativeAI", _fake_chat_class(created, delay=1.0)
    )
    with pytest.raises(ModelInvocationError):
        asyncio.run(_gemini(timeout=0.01).generate(wrapper, TRANSCRIPT))


def test_content_blocks_are_joined(monkeypatch, wrapper):
    created = []
    blocks = [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}]
    monkeypatch.setattr(
        "langchain_google_genai.ChatGoogleGenerativeAI", _fake_chat_class(created, reply=blocks)
    )
    reply = asyncio.run(_gemini().generate(wrapper, TRANSCRIPT))
    assert reply.text == "Hello there"


def test_estimate_usage_floors_each_side():
    usage = estimate_usage("x" * 12, "y" * 24)
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (3, 6, 9)
    assert usage.estimated is True

    usage = estimate_usage("abcdefg", "")
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (1, 0, 1)


def test_build_adapter_follows_provider_setting():
    assert isinstance(build_adapter(Settings(llm_provider="gemini")), GeminiAdapter)
    adapter = build_adapter(
        Settings(llm_provider="openai", openai_model="gpt-4.1", llm_timeout_seconds=3)
    )
    assert isinstance(adapter, OpenAIAdapter)
    assert adapter.default_model == "gpt-4.1"
    assert adapter.timeout == 3
