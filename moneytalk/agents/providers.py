"""
AI Providers

DESIGN DECISION: Every provider exposes the same three capabilities
(text analysis, image analysis, transcription) and returns raw text.
Parsing and validation happen once, in the extractor, so a provider
swap can never change how a payload is interpreted.

PRIORITY:
1. GeminiProvider - primary
2. OpenAIProvider - secondary; any OpenAI-compatible endpoint via base_url

Providers do not retry. A failure is reported by raising, and the
extractor moves on to the next provider.
"""

import base64
from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Any, Optional

import google.generativeai as genai
import structlog
from openai import AsyncOpenAI

from moneytalk.agents.prompts import (
    TRANSACTION_SYSTEM_PROMPT,
    build_transcription_prompt,
)
from moneytalk.config import GeminiSettings, OpenAISettings, get_settings


logger = structlog.get_logger(__name__)


class ProviderError(Exception):
    """Base exception for AI provider failures."""
    pass


class ProviderUnavailableError(ProviderError):
    """Raised when a provider cannot be reached or is not configured."""
    pass


class MalformedResponseError(ProviderError):
    """Raised when a provider answers with something that is not a usable payload."""
    pass


class TranscriptionError(Exception):
    """Raised when no provider could transcribe a recording."""

    DEFAULT_MESSAGE = "Unable to transcribe audio. Both AI services are unavailable."

    def __init__(self, message: str = DEFAULT_MESSAGE):
        super().__init__(message)
        self.message = message


AUDIO_MIME_TYPES = {
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".webm": "audio/webm",
    ".aac": "audio/aac",
}


def audio_mime_type(filename: str) -> str:
    return AUDIO_MIME_TYPES.get(PurePath(filename).suffix.lower(), "audio/mp4")


class AIProvider(ABC):
    """
    Abstract interface for an AI provider.

    All methods return raw text and raise on failure.
    """

    name: str = "provider"

    @abstractmethod
    async def analyze_text(
        self,
        prompt: str,
        system_prompt: str = TRANSACTION_SYSTEM_PROMPT,
    ) -> str:
        """Answer a text prompt."""
        pass

    @abstractmethod
    async def analyze_image(self, prompt: str, jpeg_bytes: bytes) -> str:
        """Answer a prompt about a JPEG image."""
        pass

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.m4a",
        language: str = "en",
    ) -> str:
        """Transcribe a recording to text."""
        pass


class GeminiProvider(AIProvider):
    """
    Google Gemini via google-generativeai.

    Images and audio are sent as inline parts.
    """

    name = "gemini"

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Any = None,
        transcription_model: Any = None,
    ):
        """
        Initialize the provider.

        Args:
            settings: Gemini settings (loaded from environment if None)
            model: Pre-built generative model (built from settings if None)
            transcription_model: Pre-built model used for audio
        """
        self._settings = settings or get_settings().gemini
        self._model = model
        self._transcription_model = transcription_model or model
        if self._model is None:
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )
        self._transcription_model = genai.GenerativeModel(
            model_name=self._settings.transcription_model_name,
            generation_config={"temperature": 0.0},
        )

    @staticmethod
    def _response_text(response: Any) -> str:
        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or empty
            raise MalformedResponseError(f"Gemini returned no text: {e}")

        if not text or not text.strip():
            raise MalformedResponseError("No response from Gemini")
        return text.strip()

    async def analyze_text(
        self,
        prompt: str,
        system_prompt: str = TRANSACTION_SYSTEM_PROMPT,
    ) -> str:
        response = await self._model.generate_content_async([system_prompt, prompt])
        return self._response_text(response)

    async def analyze_image(self, prompt: str, jpeg_bytes: bytes) -> str:
        response = await self._model.generate_content_async([
            prompt,
            {"mime_type": "image/jpeg", "data": jpeg_bytes},
        ])
        return self._response_text(response)

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.m4a",
        language: str = "en",
    ) -> str:
        response = await self._transcription_model.generate_content_async([
            build_transcription_prompt(language),
            {"mime_type": audio_mime_type(filename), "data": audio},
        ])
        return self._response_text(response)


class OpenAIProvider(AIProvider):
    """
    OpenAI (or any OpenAI-compatible endpoint) via the openai SDK.

    Images travel as data:image/jpeg;base64 URLs inside chat messages.
    """

    name = "openai"

    def __init__(
        self,
        settings: Optional[OpenAISettings] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._settings = settings or get_settings().openai
        self._client = client or AsyncOpenAI(
            api_key=self._settings.api_key,
            base_url=self._settings.base_url,
        )

    @staticmethod
    def _message_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise MalformedResponseError("No choices in OpenAI response")

        content = choices[0].message.content
        if not content or not content.strip():
            raise MalformedResponseError("No response from OpenAI")
        return content.strip()

    async def analyze_text(
        self,
        prompt: str,
        system_prompt: str = TRANSACTION_SYSTEM_PROMPT,
    ) -> str:
        response = await self._client.chat.completions.create(
            model=self._settings.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )
        return self._message_text(response)

    async def analyze_image(self, prompt: str, jpeg_bytes: bytes) -> str:
        encoded = base64.b64encode(jpeg_bytes).decode("ascii")
        response = await self._client.chat.completions.create(
            model=self._settings.vision_model_name,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{encoded}"},
                        },
                    ],
                },
            ],
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )
        return self._message_text(response)

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.m4a",
        language: str = "en",
    ) -> str:
        result = await self._client.audio.transcriptions.create(
            model=self._settings.transcription_model_name,
            file=(filename, audio, audio_mime_type(filename)),
            language=language,
        )
        text = getattr(result, "text", None)
        if not text or not text.strip():
            raise MalformedResponseError("Empty transcription from OpenAI")
        return text.strip()


def build_default_providers(settings=None) -> list[AIProvider]:
    """
    Build the provider chain from configuration.

    A provider whose settings cannot be loaded (e.g. no API key) is
    left out of the chain.
    """
    settings = settings or get_settings()
    providers: list[AIProvider] = []

    for attribute, provider_class in (("gemini", GeminiProvider), ("openai", OpenAIProvider)):
        try:
            provider_settings = getattr(settings, attribute)
        except Exception as e:
            logger.info("provider_not_configured", provider=attribute, reason=str(e))
            continue
        providers.append(provider_class(settings=provider_settings))

    return providers
