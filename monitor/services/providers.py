"""
monitor/services/providers.py

Text-generation providers for the notification composer.
Every provider exposes the same capability, generate(prompt) -> str, and
raises on any failure. The composer owns timeouts and fallback order.
"""

from typing import Protocol

import httpx
import structlog
from langchain_google_genai import ChatGoogleGenerativeAI

from config import Settings, TextProviderSettings
from monitor.constants import PROVIDER_MAX_TOKENS, PROVIDER_TEMPERATURE

logger = structlog.get_logger(__name__)


class TextGenProvider(Protocol):
    """One link of the provider chain."""

    name: str
    timeout: float
    max_chars: int

    async def generate(self, prompt: str) -> str: ...


class OpenAIChatProvider:
    """OpenAI-compatible chat completions endpoint (OpenAI, GLM, ...)."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: str,
        timeout: float,
        max_chars: int,
    ) -> None:
        self.name = f"openai:{model}"
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self.max_chars = max_chars
        self._api_key = api_key

    async def generate(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.endpoint,
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": PROVIDER_TEMPERATURE,
                    "max_tokens": PROVIDER_MAX_TOKENS,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        return data["choices"][0]["message"]["content"]


class GeminiProvider:
    """Google Gemini through langchain-google-genai."""

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float,
        max_chars: int,
    ) -> None:
        self.name = f"gemini:{model}"
        self.model = model
        self.timeout = timeout
        self.max_chars = max_chars
        self._api_key = api_key

    async def generate(self, prompt: str) -> str:
        llm = ChatGoogleGenerativeAI(
            model=self.model,
            google_api_key=self._api_key,
            max_output_tokens=PROVIDER_MAX_TOKENS,
            temperature=PROVIDER_TEMPERATURE,
        )
        response = await llm.ainvoke([("human", prompt)])
        return str(response.content)


def provider_from_settings(entry: TextProviderSettings) -> TextGenProvider:
    """Instantiate one provider from its configuration entry."""
    if entry.kind == "gemini":
        return GeminiProvider(
            model=entry.model,
            api_key=entry.api_key,
            timeout=entry.timeout_seconds,
            max_chars=entry.max_chars,
        )
    return OpenAIChatProvider(
        endpoint=entry.endpoint,
        model=entry.model,
        api_key=entry.api_key,
        timeout=entry.timeout_seconds,
        max_chars=entry.max_chars,
    )


def legacy_provider_settings(settings: Settings) -> list[TextProviderSettings]:
    """Derive a chain from per-vendor keys: OpenAI, then GLM, then Gemini."""
    timeout = settings.ai_request_timeout_seconds
    max_chars = settings.notification_body_max_length
    entries: list[TextProviderSettings] = []

    if settings.openai_api_key:
        entries.append(
            TextProviderSettings(
                kind="openai",
                endpoint=settings.openai_api_url,
                model=settings.openai_model,
                api_key=settings.openai_api_key,
                timeout_seconds=timeout,
                max_chars=max_chars,
            )
        )
    if settings.glm_api_key:
        entries.append(
            TextProviderSettings(
                kind="openai",
                endpoint=settings.glm_api_url,
                model=settings.glm_model,
                api_key=settings.glm_api_key,
                timeout_seconds=timeout,
                max_chars=max_chars,
            )
        )
    if settings.google_api_key:
        entries.append(
            TextProviderSettings(
                kind="gemini",
                model=settings.llm_model,
                api_key=settings.google_api_key,
                timeout_seconds=timeout,
                max_chars=max_chars,
            )
        )
    return entries


def build_providers(settings: Settings) -> list[TextGenProvider]:
    """Build the ordered provider chain from settings."""
    entries = settings.text_providers or legacy_provider_settings(settings)
    providers = [provider_from_settings(entry) for entry in entries]
    logger.info(
        "provider_chain_built",
        providers=[p.name for p in providers],
        source="text_providers" if settings.text_providers else "legacy_keys",
    )
    return providers
