"""Language-model providers behind a single symptom-analysis interface."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import google.generativeai as genai
import structlog
from openai import AsyncOpenAI

from ..config import Settings
from ..domain.errors import AnalysisProviderError

logger = structlog.get_logger()

# A chat turn as sent to a provider: {"role": "user" | "assistant", "content": str}
ChatTurn = Dict[str, str]


class SymptomAnalysisProvider(ABC):
    """Sends one prompted conversation to a hosted model and returns its raw text."""

    name = "provider"

    @abstractmethod
    async def complete(
        self, system_prompt: str, turns: List[ChatTurn], temperature: float
    ) -> str:
        pass


class GeminiProvider(SymptomAnalysisProvider):
    """Google Gemini via google-generativeai."""

    name = "gemini"

    def __init__(self, api_key: Optional[str], model: str = "gemini-1.5-pro") -> None:
        self.api_key = api_key
        self.model_name = model
        if api_key:
            genai.configure(api_key=api_key)
        logger.info("gemini_provider_init", model=model, configured=bool(api_key))

    async def complete(
        self, system_prompt: str, turns: List[ChatTurn], temperature: float
    ) -> str:
        if not self.api_key:
            raise AnalysisProviderError("GEMINI_API_KEY is not set")

        model = genai.GenerativeModel(self.model_name, system_instruction=system_prompt)
        contents = [
            {
                "role": "model" if turn["role"] == "assistant" else "user",
                "parts": [turn["content"]],
            }
            for turn in turns
        ]
        response = await model.generate_content_async(
            contents,
            generation_config={
                "temperature": temperature,
                "response_mime_type": "application/json",
            },
        )
        return response.text


class OpenAIProvider(SymptomAnalysisProvider):
    """OpenAI chat completions in JSON mode."""

    name = "openai"

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o") -> None:
        self.model_name = model
        self.client = AsyncOpenAI(api_key=api_key) if api_key else None
        logger.info("openai_provider_init", model=model, configured=bool(api_key))

    async def complete(
        self, system_prompt: str, turns: List[ChatTurn], temperature: float
    ) -> str:
        if self.client is None:
            raise AnalysisProviderError("OPENAI_API_KEY is not set")

        completion = await self.client.chat.completions.create(
            model=self.model_name,
            messages=[{"role": "system", "content": system_prompt}, *turns],
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        return completion.choices[0].message.content or ""


def build_provider(settings: Settings) -> SymptomAnalysisProvider:
    """Instantiate the provider named by settings.analysis_provider."""
    if settings.analysis_provider == "gemini":
        return GeminiProvider(settings.gemini_api_key, settings.gemini_model)
    if settings.analysis_provider == "openai":
        return OpenAIProvider(settings.openai_api_key, settings.openai_model)
    raise ValueError(f"Unknown analysis provider: {settings.analysis_provider!r}")
