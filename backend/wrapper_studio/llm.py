from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from wrapper_studio.config import Settings
from wrapper_studio.schemas import Message, TokenUsage, Wrapper

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# Gemini has no system role; system turns are sent as annotated user turns.
SYSTEM_INSTRUCTION_TEMPLATE = "(System instruction: {content})"


class ModelInvocationError(RuntimeError):
    """The provider could not be reached, rejected the request, or timed out."""


@dataclass(frozen=True)
class GenerationSettings:
    temperature: float
    top_p: float
    max_output_tokens: int

    @classmethod
    def from_wrapper(cls, wrapper: Wrapper) -> "GenerationSettings":
        return cls(
            temperature=wrapper.temperature / 100,
            top_p=wrapper.top_p / 100,
            max_output_tokens=wrapper.max_tokens,
        )


@dataclass(frozen=True)
class ModelReply:
    text: str
    model: str


def estimate_usage(prompt: str, completion: str) -> TokenUsage:
    """Approximate token counts at four characters per token.

    Neither provider adapter meters usage, so these numbers are estimates and
    are flagged as such in the response.
    """
    prompt_tokens = len(prompt) // CHARS_PER_TOKEN
    completion_tokens = len(completion) // CHARS_PER_TOKEN
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def _response_text(response: Any) -> str:
    content = response.content if hasattr(response, "content") else response
    if isinstance(content, list):
        # Content blocks: keep the text parts only
        return "".join(
            block if isinstance(block, str) else str(block.get("text", ""))
            for block in content
        )
    return str(content)


class ModelAdapter(ABC):
    """Turns a wrapper plus a role-tagged transcript into one model reply."""

    model_names: Dict[str, str] = {}

    def __init__(self, *, default_model: str, timeout: float) -> None:
        self.default_model = default_model
        self.timeout = timeout

    def resolve_model(self, base_model: str) -> str:
        """Map a wrapper's display model name to a provider model id."""
        return self.model_names.get(base_model, self.default_model)

    @abstractmethod
    def to_provider_messages(self, messages: Sequence[Message]) -> List[BaseMessage]:
        ...

    @abstractmethod
    def chat_model(self, model_id: str, settings: GenerationSettings) -> BaseChatModel:
        ...

    async def generate(self, wrapper: Wrapper, messages: Sequence[Message]) -> ModelReply:
        """Send ``messages`` (the last one being the new user turn) and return the reply."""
        model_id = self.resolve_model(wrapper.base_model)
        settings = GenerationSettings.from_wrapper(wrapper)
        try:
            translated = self.to_provider_messages(messages)
            llm = self.chat_model(model_id, settings)
            # LangChain sends all but the last message as history; the last is the live turn.
            response = await asyncio.wait_for(llm.ainvoke(translated), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("%s did not answer within %.1fs", model_id, self.timeout)
            raise ModelInvocationError(f"{model_id} timed out") from exc
        except Exception as exc:
            logger.error("%s invocation failed: %s", model_id, exc)
            raise ModelInvocationError(f"{model_id} invocation failed") from exc

        return ModelReply(text=_response_text(response), model=model_id)


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------
def gemini_safety_settings() -> Dict[Any, Any]:
    """Block medium-and-above for harassment, hate, sexual and dangerous content."""
    from langchain_google_genai import HarmBlockThreshold, HarmCategory

    threshold = HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE
    return {
        HarmCategory.HARM_CATEGORY_HARASSMENT: threshold,
        HarmCategory.HARM_CATEGORY_HATE_SPEECH: threshold,
        HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: threshold,
        HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: threshold,
    }


class GeminiAdapter(ModelAdapter):
    model_names = {
        "Gemini Pro": "gemini-pro",
        "Gemini Pro Vision": "gemini-pro-vision",
        "Gemini 1.5 Pro": "gemini-1.5-pro",
        "Gemini 1.5 Flash": "gemini-1.5-flash",
        "Gemini 2.0 Flash": "gemini-2.0-flash",
    }

    def __init__(self, *, api_key: str | None, default_model: str, timeout: float) -> None:
        super().__init__(default_model=default_model, timeout=timeout)
        self.api_key = api_key

    def to_provider_messages(self, messages: Sequence[Message]) -> List[BaseMessage]:
        translated: List[BaseMessage] = []
        for msg in messages:
            if msg.role == "system":
                translated.append(
                    HumanMessage(content=SYSTEM_INSTRUCTION_TEMPLATE.format(content=msg.content))
                )
            elif msg.role == "user":
                translated.append(HumanMessage(content=msg.content))
            else:
                translated.append(AIMessage(content=msg.content))
        return translated

    def chat_model(self, model_id: str, settings: GenerationSettings) -> BaseChatModel:
        from langchain_google_genai import ChatGoogleGenerativeAI

        if not self.api_key:
            raise RuntimeError(
                "GEMINI_API_KEY is not set but llm_provider is 'gemini'. "
                "Set GEMINI_API_KEY or switch LLM_PROVIDER to 'openai'."
            )
        return ChatGoogleGenerativeAI(
            model=model_id,
            google_api_key=self.api_key,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_output_tokens=settings.max_output_tokens,
            safety_settings=gemini_safety_settings(),
        )


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------
class OpenAIAdapter(ModelAdapter):
    """Native system role, so transcripts are passed through untranslated."""

    model_names = {
        "GPT-4o": "gpt-4o",
        "GPT-4o Mini": "gpt-4o-mini",
        "GPT-4.1": "gpt-4.1",
    }

    def __init__(self, *, api_key: str | None, default_model: str, timeout: float) -> None:
        super().__init__(default_model=default_model, timeout=timeout)
        self.api_key = api_key

    def to_provider_messages(self, messages: Sequence[Message]) -> List[BaseMessage]:
        kinds = {"system": SystemMessage, "user": HumanMessage}
        return [kinds.get(msg.role, AIMessage)(content=msg.content) for msg in messages]

    def chat_model(self, model_id: str, settings: GenerationSettings) -> BaseChatModel:
        from langchain_openai import ChatOpenAI

        if not self.api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set but llm_provider is 'openai'. "
                "Set OPENAI_API_KEY or switch LLM_PROVIDER to 'gemini'."
            )
        return ChatOpenAI(
            model=model_id,
            api_key=self.api_key,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_output_tokens,
        )


def build_adapter(settings: Settings) -> ModelAdapter:
    """Create the model adapter according to settings."""
    if settings.llm_provider == "openai":
        return OpenAIAdapter(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            timeout=settings.llm_timeout_seconds,
        )
    return GeminiAdapter(
        api_key=settings.google_api_key,
        default_model=settings.gemini_model,
        timeout=settings.llm_timeout_seconds,
    )


__all__ = [
    "GenerationSettings",
    "GeminiAdapter",
    "ModelAdapter",
    "ModelInvocationError",
    "ModelReply",
    "OpenAIAdapter",
    "build_adapter",
    "estimate_usage",
    "gemini_safety_settings",
]
